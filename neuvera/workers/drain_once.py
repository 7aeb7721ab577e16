import json
import logging
from pathlib import Path
from typing import Optional

import redis

from ..config import Settings, get_settings
from .events_writer import _redis, write_batch

logger = logging.getLogger(__name__)


def drain_once(settings: Optional[Settings] = None, client: Optional[redis.Redis] = None) -> Optional[Path]:
    settings = settings or get_settings()
    r = client or _redis(settings)
    batch = []
    # Pop everything currently in Redis
    while True:
        raw = r.lpop(settings.events_queue)
        if raw is None:
            break
        try:
            batch.append(json.loads(raw))
        except ValueError as e:
            logger.warning("[drain] skip bad json: %s", e)

    if not batch:
        logger.info("[drain] queue empty, nothing to write.")
        return None
    return write_batch(batch, settings.parquet_dir)


if __name__ == "__main__":
    from ..config import configure_logging
    configure_logging(get_settings().log_level)
    drain_once()
