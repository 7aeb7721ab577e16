"""
Best-effort delivery of event batches to the ingest endpoint.

``beacon`` is fire-and-forget: the payload is handed to a background sender
and the caller only learns whether it was accepted. ``post`` is the
synchronous keep-alive fallback. Neither retries; the batcher decides what
to do with a failed batch.
"""
from __future__ import annotations
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import httpx

from ..events import Event

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json", "Connection": "keep-alive"}


def encode_batch(batch: List[Event]) -> bytes:
    return json.dumps({"events": [ev.wire() for ev in batch]}, separators=(",", ":")).encode("utf-8")


class Transport:
    def __init__(self, endpoint: str, beacon_max_bytes: int = 64 * 1024, timeout: float = 5.0,
                 client: Optional[httpx.Client] = None, use_beacon: bool = True):
        self.endpoint = endpoint
        self.beacon_max_bytes = beacon_max_bytes
        self.use_beacon = use_beacon
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._sender: Optional[ThreadPoolExecutor] = None
        self._closed = False

    def send(self, batch: List[Event]) -> bool:
        if not batch:
            return True
        body = encode_batch(batch)
        if self.use_beacon and self.beacon(body):
            return True
        return self.post(body)

    def beacon(self, body: bytes) -> bool:
        if self._closed or len(body) > self.beacon_max_bytes:
            return False
        if self._sender is None:
            self._sender = ThreadPoolExecutor(max_workers=1, thread_name_prefix="neuvera-beacon")
        try:
            self._sender.submit(self._deliver, body)
        except RuntimeError:
            # sender already shut down
            return False
        return True

    def _deliver(self, body: bytes) -> None:
        try:
            self._client.post(self.endpoint, content=body, headers=JSON_HEADERS)
        except httpx.HTTPError as e:
            logger.debug("beacon delivery failed: %s", e)

    def post(self, body: bytes) -> bool:
        if self._closed:
            return False
        try:
            resp = self._client.post(self.endpoint, content=body, headers=JSON_HEADERS)
        except httpx.HTTPError as e:
            logger.debug("tracking POST failed: %s", e)
            return False
        if resp.status_code >= 500:
            logger.debug("tracking POST answered %s", resp.status_code)
            return False
        if resp.status_code >= 400:
            # malformed on the server's side; sending it again would fail the same way
            logger.debug("tracking batch rejected with %s, not retrying", resp.status_code)
        return True

    def post_json(self, url: str, data: Dict[str, Any]) -> bool:
        if self._closed:
            return False
        try:
            resp = self._client.post(url, json=data)
        except httpx.HTTPError as e:
            logger.debug("POST %s failed: %s", url, e)
            return False
        return resp.is_success

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._sender is not None:
            self._sender.shutdown(wait=True)
        if self._owns_client:
            self._client.close()
