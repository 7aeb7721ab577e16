import logging
import time
from typing import Any, Optional

import redis
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from .analytics import load_events, page_views, recent_events, sessions, summarize
from .config import Settings, configure_logging, get_settings
from .errors import MalformedBatchError, StorageError
from .events import EventType
from .ingest import EventStore, IngestService, RequestContext
from .privacy.anonymize import client_ip
from .privacy.gate import do_not_track_from_headers
from .privacy.registry import OptOutRegistry

logger = logging.getLogger(__name__)

# 1x1 transparent gif
PIXEL_BYTES = (
    b"GIF89a"
    b"\x01\x00\x01\x00"
    b"\x80"
    b"\x00"
    b"\x00"
    b"\x00\x00\x00"
    b"\xff\xff\xff"
    b"\x21\xf9\x04\x01\x00\x00\x00\x00"
    b"\x2c\x00\x00\x00\x00\x01\x00\x01\x00\x00"
    b"\x02\x02\x44\x01\x00"
    b"\x3b"
)

NO_STORE = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

DATA_VIEWS = {"events": recent_events, "sessions": sessions, "pageviews": page_views}
DATA_TYPES = (*DATA_VIEWS, "stats", "realtime")
MAX_DATA_LIMIT = 1000
DEFAULT_WINDOW = 7 * 24 * 3600


def _redis(settings: Settings) -> redis.Redis:
    return redis.Redis(host=settings.redis_host, port=settings.redis_port,
                       db=settings.redis_db, decode_responses=False)


def _context(request: Request, source: str) -> RequestContext:
    peer = request.client.host if request.client else None
    return RequestContext(
        ip=client_ip(request.headers, peer),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        source=source,
    )


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise MalformedBatchError("body is not valid JSON") from e


def _bad_request(msg: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": msg})


def _unavailable() -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": "storage unavailable"})


def create_app(settings: Optional[Settings] = None, client: Optional[redis.Redis] = None) -> FastAPI:
    settings = settings or get_settings()
    r = client if client is not None else _redis(settings)

    registry = OptOutRegistry(r, settings.optout_key)
    store = EventStore(r, settings.events_queue)
    service = IngestService(store, registry)

    app = FastAPI(title="Neuvera Tracking API", version="0.1.0")
    app.state.settings = settings
    app.state.registry = registry
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    @app.get("/health")
    def health():
        redis_ok = False
        try:
            r.ping()
            redis_ok = True
        except redis.RedisError:
            pass
        return {"ok": True, "service": "neuvera-tracking", "redis": redis_ok}

    async def _ingest(request: Request, source: str):
        ctx = _context(request, source)
        try:
            payload = await _json_body(request)
            result = await run_in_threadpool(service.ingest, payload, ctx)
        except MalformedBatchError as e:
            return _bad_request(str(e))
        except StorageError as e:
            logger.warning("ingest failed: %s", e)
            return _unavailable()
        # dropped (opted-out) events count as processed so the caller cannot tell them apart
        return {"success": True, "processed": result.accepted + result.dropped}

    @app.post("/api/track")
    async def track(request: Request):
        """Accept ``{"events": [...]}`` from the client batcher."""
        return await _ingest(request, "api")

    @app.post("/api/tracking/pixel")
    async def tracking_pixel(request: Request):
        return await _ingest(request, "pixel")

    @app.get("/api/pixel.gif")
    def pixel_gif(
        request: Request,
        pid: Optional[str] = None,
        event: Optional[str] = None,
        url: Optional[str] = None,
        ref: Optional[str] = None,
        sid: Optional[str] = None,
    ):
        """
        Image fallback for clients without JS:
          <img src="/api/pixel.gif?pid=...&sid=...&event=page_view&url=...">
        Always answers with the gif so page rendering never breaks. These
        clients run no privacy gate of their own, so DNT / Sec-GPC headers
        are honoured here.
        """
        if pid and not do_not_track_from_headers(request.headers):
            kind = event or EventType.page_view.value
            if kind not in EventType.__members__:
                metadata, kind = {"action": kind}, EventType.custom.value
            else:
                metadata = None
            raw = {
                "pixelId": pid,
                "sessionId": sid or pid,
                "eventType": kind,
                "currentUrl": url or request.headers.get("referer") or "",
                "referrerUrl": ref,
                "metadata": metadata,
            }
            try:
                service.ingest({"events": [raw]}, _context(request, "gif"))
            except (MalformedBatchError, StorageError) as e:
                logger.debug("pixel.gif event not recorded: %s", e)
        return Response(PIXEL_BYTES, media_type="image/gif", headers=NO_STORE)

    async def _privacy_user(request: Request) -> str:
        body = await _json_body(request)
        user_id = body.get("userId") if isinstance(body, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise MalformedBatchError("userId is required")
        return user_id

    @app.post("/api/privacy/opt-out")
    async def opt_out(request: Request):
        try:
            user_id = await _privacy_user(request)
            await run_in_threadpool(registry.opt_out, user_id)
        except MalformedBatchError as e:
            return _bad_request(str(e))
        except StorageError as e:
            logger.warning("opt-out failed: %s", e)
            return _unavailable()
        return {"success": True}

    @app.post("/api/privacy/opt-in")
    async def opt_in(request: Request):
        try:
            user_id = await _privacy_user(request)
            await run_in_threadpool(registry.opt_in, user_id)
        except MalformedBatchError as e:
            return _bad_request(str(e))
        except StorageError as e:
            logger.warning("opt-in failed: %s", e)
            return _unavailable()
        return {"success": True}

    @app.get("/api/tracking/stats")
    def tracking_stats(
        start: Optional[float] = Query(None, description="epoch seconds"),
        end: Optional[float] = Query(None, description="epoch seconds"),
        k: int = Query(settings.analytics_k, ge=1, description="suppress pages seen fewer than k times"),
    ):
        if start is not None and end is not None and start > end:
            return _bad_request("start must be before end")
        df = load_events(settings.parquet_dir)
        return summarize(df, start=start, end=end, k=k)


    @app.get("/api/tracking/data")
    def tracking_data(
        kind: str = Query("events", alias="type", description="|".join(DATA_TYPES)),
        limit: str = Query("50", description="1..1000"),
        start: Optional[float] = Query(None, description="epoch seconds, default a week ago"),
        end: Optional[float] = Query(None, description="epoch seconds, default now"),
    ):
        try:
            n = int(limit)
        except ValueError:
            return _bad_request("limit must be an integer")
        if not 1 <= n <= MAX_DATA_LIMIT:
            return _bad_request(f"limit must be between 1 and {MAX_DATA_LIMIT}")
        if kind not in DATA_TYPES:
            return _bad_request(f"type must be one of {', '.join(DATA_TYPES)}")
        end = time.time() if end is None else end
        start = end - DEFAULT_WINDOW if start is None else start
        if start > end:
            return _bad_request("start must be before end")

        if kind == "realtime":
            try:
                data = store.pending(n)
            except StorageError as e:
                logger.warning("realtime read failed: %s", e)
                return _unavailable()
        else:
            df = load_events(settings.parquet_dir)
            if kind == "stats":
                data = summarize(df, start=start, end=end, k=settings.analytics_k)
            else:
                data = DATA_VIEWS[kind](df, start=start, end=end, limit=n)
        return {"success": True, "type": kind, "data": data}

    return app


# uvicorn neuvera.app:app
app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
