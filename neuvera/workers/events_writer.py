import json
import logging
import time
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd
import redis

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


def _redis(settings: Settings) -> redis.Redis:
    return redis.Redis(host=settings.redis_host, port=settings.redis_port,
                       db=settings.redis_db, decode_responses=False)


def to_frame(batch: List[dict]) -> pd.DataFrame:
    df = pd.DataFrame(batch)
    # metadata is an opaque mapping; parquet gets it as JSON text
    if "metadata" in df:
        df["metadata"] = df["metadata"].map(
            lambda m: json.dumps(m, sort_keys=True) if isinstance(m, dict) else None)
    return df


def write_batch(batch: List[dict], outdir: Path) -> Optional[Path]:
    if not batch:
        return None
    outdir.mkdir(parents=True, exist_ok=True)
    df = to_frame(batch)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    path = outdir / f"events_{stamp}.parquet"
    df.to_parquet(path, engine="pyarrow", index=False)
    logger.info("[writer] wrote %d -> %s", len(batch), path)
    return path


def run(settings: Optional[Settings] = None, client: Optional[redis.Redis] = None):
    settings = settings or get_settings()
    r = client or _redis(settings)
    queue = settings.events_queue
    logger.info("[writer] watching Redis list '%s'", queue)
    buf = []
    last = time.time()

    while True:
        # Blocking pop with timeout so we can time-flush
        item = r.blpop(queue, timeout=1)
        if item:
            _, raw = item
            try:
                buf.append(json.loads(raw))
            except ValueError as e:
                logger.warning("[writer] JSON decode error: %r", e)

        if buf and (len(buf) >= settings.writer_batch_size
                    or (time.time() - last) >= settings.writer_flush_seconds):
            write_batch(buf, settings.parquet_dir)
            buf.clear()
            last = time.time()


if __name__ == "__main__":
    from ..config import configure_logging
    configure_logging(get_settings().log_level)
    run()
