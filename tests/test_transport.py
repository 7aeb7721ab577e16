import json

import httpx

from conftest import make_event
from neuvera.client.transport import Transport, encode_batch

ENDPOINT = "http://tracking.test/api/track"


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_beacon_delivers_in_background():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    t = Transport(ENDPOINT, client=_client(handler))
    assert t.send([make_event(1), make_event(2)]) is True
    t.close()
    assert len(seen) == 1
    assert [e["currentUrl"] for e in seen[0]["events"]] == [
        "https://neuvera.ai/page/1", "https://neuvera.ai/page/2"]
    assert seen[0]["events"][0]["eventType"] == "page_view"


def test_oversized_payload_falls_back_to_post():
    hits = []

    def handler(request):
        hits.append(request.headers.get("connection"))
        return httpx.Response(200)

    t = Transport(ENDPOINT, beacon_max_bytes=10, client=_client(handler))
    body = encode_batch([make_event(1)])
    assert t.beacon(body) is False
    assert t.send([make_event(1)]) is True
    assert hits == ["keep-alive"]


def test_post_failure_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    t = Transport(ENDPOINT, client=_client(handler), use_beacon=False)
    assert t.send([make_event(1)]) is False


def test_server_error_is_failure_client_error_is_not():
    status = {"code": 503}

    def handler(request):
        return httpx.Response(status["code"])

    t = Transport(ENDPOINT, client=_client(handler), use_beacon=False)
    assert t.send([make_event(1)]) is False
    status["code"] = 400
    # malformed batches are not worth sending again
    assert t.send([make_event(1)]) is True


def test_closed_transport_refuses():
    t = Transport(ENDPOINT, client=_client(lambda r: httpx.Response(200)))
    t.close()
    assert t.send([make_event(1)]) is False
