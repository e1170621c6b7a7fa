from pydantic import BaseModel, Field
from typing import Any, Dict
from datetime import datetime, timezone
import json
import orjson


def dumps(obj: Any) -> bytes:
    """orjson, falling back to ASCII-escaped json for lone surrogates."""
    try:
        return orjson.dumps(obj)
    except orjson.JSONEncodeError:
        return json.dumps(obj, separators=(",", ":")).encode()


class EventRecord(BaseModel):
    headers: Dict[str, str] = Field(default_factory=dict, description="Request headers, lowercase names")
    identity: str = Field(..., min_length=1, description="Anonymous client ID")
    client_address: str = Field("", description="Resolved originating address")
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] | None = None

    @property
    def accepted(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_json(self) -> bytes:
        return dumps(self.to_dict())
