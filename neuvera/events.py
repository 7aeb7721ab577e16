from __future__ import annotations
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    page_view = "page_view"
    click = "click"
    form_submit = "form_submit"
    chat_interaction = "chat_interaction"
    button_click = "button_click"
    engagement = "engagement"
    custom = "custom"


class _Wire(BaseModel):
    # camelCase on the wire, snake_case in python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Event(_Wire):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    pixel_id: str = Field(..., min_length=1, description="per-profile pixel uuid")
    session_id: str = Field(..., min_length=1, description="per-session uuid")
    event_type: EventType
    current_url: str
    referrer_url: Optional[str] = None
    hashed_user_id: Optional[str] = Field(None, description="sha-256 of the user id, never the raw id")
    metadata: Optional[Dict[str, Any]] = None
    timestamp: float = Field(default_factory=time.time, description="epoch seconds")


class StoredEvent(Event):
    # server-observed context, stamped at ingest
    ip: str = "unknown"
    user_agent: str = "unknown"
    referer: str = "unknown"
    received_at: str
    source: str = "api"


class EventBatch(BaseModel):
    # items are validated one by one so a bad event does not sink the batch
    events: List[Any]


class OptOutRecord(_Wire):
    hashed_user_id: str
    opted_out: bool = False
