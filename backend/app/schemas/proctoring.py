from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator


class ProctoringEventIn(BaseModel):
    event: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("event", "type"))
    event_id: Optional[str] = Field(default=None, max_length=128, alias="eventId")
    meta: Optional[Dict[str, Any]] = None
    ts: Optional[str] = None

    model_config = {"populate_by_name": True}


class ProctoringBatch(BaseModel):
    """Either ``{"events": [...]}`` or a single bare event."""

    events: List[ProctoringEventIn] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _wrap_single_event(cls, data: Any) -> Any:
        if isinstance(data, dict) and "events" not in data and ("event" in data or "type" in data):
            return {"events": [data]}
        return data

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [
            {"event": e.event, "eventId": e.event_id, "meta": e.meta, "ts": e.ts}
            for e in self.events
        ]
