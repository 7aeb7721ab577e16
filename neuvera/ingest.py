"""
Server-side ingest: shape-check a batch, enrich each event with what the
server observed, drop events of opted-out users and queue the rest in Redis.

The HTTP adapter in ``app.py`` only maps ``IngestResult`` and errors onto
status codes; the keep/drop decision lives here.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import redis
from pydantic import ValidationError

from .errors import MalformedBatchError, StorageError
from .events import Event, EventBatch, StoredEvent
from .privacy.anonymize import anonymize_ip
from .privacy.registry import OptOutRegistry

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    source: str = "api"


@dataclass
class IngestResult:
    accepted: int = 0
    dropped: int = 0    # opted out
    rejected: int = 0   # failed per-event validation


def parse_batch(payload: Any) -> Tuple[List[Event], int]:
    """Return (valid events, number rejected). Raises MalformedBatchError on a bad envelope."""
    try:
        batch = EventBatch.model_validate(payload)
    except ValidationError as e:
        raise MalformedBatchError("expected {\"events\": [...]}") from e

    events, rejected = [], 0
    for raw in batch.events:
        try:
            events.append(Event.model_validate(raw))
        except ValidationError as e:
            rejected += 1
            logger.debug("skip invalid event: %s", e.errors()[:1])
    return events, rejected


def enrich(event: Event, ctx: RequestContext) -> StoredEvent:
    return StoredEvent(
        **event.model_dump(),
        ip=anonymize_ip(ctx.ip),
        user_agent=ctx.user_agent or "unknown",
        referer=ctx.referer or "unknown",
        received_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        source=ctx.source,
    )


def should_persist(event: Event, registry: OptOutRegistry) -> bool:
    if not event.hashed_user_id:
        return True
    return not registry.has_opted_out(event.hashed_user_id)


class EventStore:
    """Redis list the drain worker pops from."""

    def __init__(self, client: redis.Redis, queue: str = "events"):
        self.r = client
        self.queue = queue

    def push(self, events: List[StoredEvent]) -> int:
        if not events:
            return 0
        try:
            self.r.rpush(self.queue, *[ev.model_dump_json(by_alias=True, exclude_none=True) for ev in events])
        except redis.RedisError as e:
            raise StorageError(f"event queue write failed: {e}") from e
        return len(events)

    def pending(self, limit: int = 50) -> List[dict]:
        """Newest queued events first, not yet drained to Parquet."""
        try:
            raw = self.r.lrange(self.queue, -limit, -1)
        except redis.RedisError as e:
            raise StorageError(f"event queue read failed: {e}") from e
        return [json.loads(x) for x in reversed(raw)]


class IngestService:
    def __init__(self, store: EventStore, registry: OptOutRegistry):
        self.store = store
        self.registry = registry

    def ingest(self, payload: Any, ctx: RequestContext) -> IngestResult:
        events, rejected = parse_batch(payload)
        result = IngestResult(rejected=rejected)

        keep = []
        for ev in events:
            if should_persist(ev, self.registry):
                keep.append(enrich(ev, ctx))
            else:
                result.dropped += 1
        result.accepted = self.store.push(keep)

        logger.debug("ingest source=%s accepted=%d dropped=%d rejected=%d",
                     ctx.source, result.accepted, result.dropped, result.rejected)
        return result
