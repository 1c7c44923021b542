from __future__ import annotations

from datetime import datetime
from typing import Any

import orjson
from pydantic import BaseModel, Field

from src.models.enums import QueryIntent, ResultType


def _orjson_dumps(v: object, *, default: object = None) -> str:
    return orjson.dumps(v, default=default).decode()


class QueryResult(BaseModel):
    id: str
    type: ResultType
    title: str
    description: str
    timestamp: datetime | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    # Insertion order is preserved and is part of the response contract.
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    message: str
    intent: QueryIntent
    results: list[QueryResult] = Field(default_factory=list)

    def to_json(self) -> str:
        return _orjson_dumps(self.model_dump(mode="json"))
