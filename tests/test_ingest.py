import json

import pytest

from conftest import make_event
from neuvera.errors import MalformedBatchError, StorageError
from neuvera.ingest import EventStore, IngestService, RequestContext, enrich, parse_batch, should_persist
from neuvera.privacy.registry import OptOutRegistry


def _raw(**kw):
    return make_event(**kw).wire()


@pytest.mark.parametrize("payload", [{}, [], None, "events", {"events": "nope"}, {"evts": []}])
def test_malformed_envelope(payload):
    with pytest.raises(MalformedBatchError):
        parse_batch(payload)


def test_invalid_events_dropped_individually():
    events, rejected = parse_batch({"events": [_raw(), {"eventType": "page_view"}, 42, _raw(i=1)]})
    assert len(events) == 2
    assert rejected == 2


def test_unknown_event_type_rejected():
    raw = _raw()
    raw["eventType"] = "scroll"
    events, rejected = parse_batch({"events": [raw]})
    assert events == [] and rejected == 1


def test_enrich_anonymizes_ip():
    stored = enrich(make_event(), RequestContext(ip="198.51.100.23", user_agent="pytest", source="pixel"))
    assert stored.ip == "198.51.100.0"
    assert stored.user_agent == "pytest"
    assert stored.referer == "unknown"
    assert stored.source == "pixel"
    assert stored.received_at.endswith("+00:00")


def test_should_persist_consults_registry(fake_redis):
    registry = OptOutRegistry(fake_redis)
    registry.opt_out("abc")
    assert should_persist(make_event(hashed_user_id="abc"), registry) is False
    assert should_persist(make_event(hashed_user_id="xyz"), registry) is True
    assert should_persist(make_event(), registry) is True


def test_opt_out_is_monotonic_and_durable(fake_redis):
    assert OptOutRegistry(fake_redis).opt_out("abc").opted_out is True
    assert OptOutRegistry(fake_redis).opt_out("abc").opted_out is True
    # a fresh registry over the same redis, as after a restart
    registry = OptOutRegistry(fake_redis)
    assert all(registry.has_opted_out("abc") for _ in range(3))
    assert registry.has_opted_out("someone-else") is False

    assert registry.opt_in("abc").opted_out is False
    assert registry.has_opted_out("abc") is False


def test_ingest_service_drops_opted_out(fake_redis):
    registry = OptOutRegistry(fake_redis)
    registry.opt_out("abc")
    svc = IngestService(EventStore(fake_redis), registry)
    result = svc.ingest({"events": [_raw(hashed_user_id="abc"), _raw(i=1)]}, RequestContext())
    assert (result.accepted, result.dropped, result.rejected) == (1, 1, 0)

    stored = [json.loads(x) for x in fake_redis.lists["events"]]
    assert len(stored) == 1
    assert stored[0]["currentUrl"] == "https://neuvera.ai/page/1"
    assert "hashedUserId" not in stored[0]


def test_store_errors_surface_as_storage_error(fake_redis):
    fake_redis.broken = True
    with pytest.raises(StorageError):
        EventStore(fake_redis).push([enrich(make_event(), RequestContext())])
    with pytest.raises(StorageError):
        OptOutRegistry(fake_redis).has_opted_out("abc")
