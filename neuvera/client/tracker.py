"""
Client-side tracking service.

One explicitly constructed ``PixelTracker`` per host application: it owns the
identity store, privacy settings and batcher, and is started and torn down
with ``init()`` / ``dispose()``.

    tracker = PixelTracker(TrackerConfig(endpoint="https://example.org/api/track"))
    tracker.init()
    tracker.track_page_view("https://example.org/chat")
    ...
    tracker.dispose()
"""
from __future__ import annotations
import atexit
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import TrackerConfig
from ..events import Event, EventType
from ..privacy.anonymize import hash_identifier
from ..privacy.gate import PrivacySettings, should_track
from ..privacy.sanitizer import sanitize
from .batcher import EventBatcher
from .identity import IdentityStore
from .transport import Transport

logger = logging.getLogger(__name__)

# (category, action) -> event type; a category alone matches any action
EVENT_TYPES = {
    ("page", "view"): EventType.page_view,
    ("interaction", "click"): EventType.click,
    ("interaction", "form_submit"): EventType.form_submit,
    ("chat", None): EventType.chat_interaction,
    ("button", None): EventType.button_click,
    ("engagement", None): EventType.engagement,
}

TRANSPORT_OPTIONS = {"endpoint", "beacon_max_bytes", "request_timeout"}


def event_type_for(category: str, action: str) -> EventType:
    return EVENT_TYPES.get((category, action)) or EVENT_TYPES.get((category, None)) or EventType.custom


def _is_password_field(field: Mapping[str, Any]) -> bool:
    return (str(field.get("type", "")).lower() == "password"
            or "password" in str(field.get("name", "")).lower()
            or "password" in str(field.get("id", "")).lower())


class PixelTracker:
    def __init__(self, config: Optional[TrackerConfig] = None, identity: Optional[IdentityStore] = None,
                 transport=None, settings: Optional[PrivacySettings] = None,
                 is_online: Optional[Callable[[], bool]] = None):
        self.config = config or TrackerConfig()
        if identity is None:
            identity = IdentityStore.at(self.config.storage_path) if self.config.storage_path else IdentityStore()
        self.identity = identity

        self._owns_transport = transport is None
        self.transport = transport or self._make_transport()
        self.batcher = EventBatcher(self.transport, self.config.max_queue_size,
                                    self.config.max_retries, is_online)

        settings = settings or PrivacySettings(anonymize=self.config.anonymize,
                                               requires_consent=self.config.requires_consent)
        # the local opt-out flag survives restarts
        self.privacy = settings.model_copy(update={"opted_out": settings.opted_out or identity.is_opted_out()})

        self.pixel_id = identity.get_or_create_pixel_id()
        self.session_id = identity.get_or_create_session_id()
        self._user_id = identity.get_user_id()

        self.current_url = ""
        self.referrer: Optional[str] = None
        self._initialized = False
        self._started_at = time.time()

    def _make_transport(self) -> Transport:
        return Transport(self.config.endpoint, beacon_max_bytes=self.config.beacon_max_bytes,
                         timeout=self.config.request_timeout)

    # ---------- lifecycle ----------

    def init(self, **options) -> None:
        if self._initialized:
            return
        privacy = {k: v for k, v in options.items() if k in PrivacySettings.model_fields}
        config = {k: v for k, v in options.items() if k not in privacy}
        if config:
            self.config = TrackerConfig.model_validate({**self.config.model_dump(), **config})
            self.batcher.max_queue_size = self.config.max_queue_size
            self.batcher.max_retries = self.config.max_retries
            if self._owns_transport and TRANSPORT_OPTIONS & config.keys():
                self.transport.close()
                self.transport = self.batcher.transport = self._make_transport()
        if privacy:
            self.privacy = self.privacy.model_copy(update=privacy)
        if self.config.debug:
            logger.setLevel(logging.DEBUG)

        self.batcher.start(self.config.flush_interval)
        atexit.register(self._unload)
        self._initialized = True

        self.track("system", "initialize", {"url": self.current_url, "referrer": self.referrer})
        self.track_page_view()
        logger.debug("tracking pixel initialized")

    def dispose(self) -> None:
        if self._initialized:
            atexit.unregister(self._unload)
            self._initialized = False
        self.batcher.stop()
        self.batcher.flush(force=True)
        if self._owns_transport:
            self.transport.close()

    def _unload(self) -> None:
        self.track("page", "unload", {"time_on_page": time.time() - self._started_at})
        self.batcher.flush(force=True)

    def __enter__(self) -> "PixelTracker":
        self.init()
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()

    # ---------- recording ----------

    def should_track(self) -> bool:
        return should_track(self.privacy)

    def track(self, category: str, action: str, data: Optional[Mapping[str, Any]] = None,
              url: Optional[str] = None) -> Optional[Event]:
        if not self.should_track():
            return None
        try:
            metadata: Dict[str, Any] = {"category": category, "action": action}
            metadata.update(data or {})
            event = Event(
                pixel_id=self.pixel_id,
                session_id=self.session_id,
                event_type=event_type_for(category, action),
                current_url=url or self.current_url,
                referrer_url=self.referrer or None,
                hashed_user_id=self.get_user_id(),
                metadata=sanitize(metadata),
                timestamp=time.time(),
            )
            # unserializable metadata is refused here, not inside a flush
            event.wire()
        except (TypeError, ValueError) as e:
            logger.debug("event %s/%s not recorded: %s", category, action, e)
            return None
        self.batcher.enqueue(event)
        return event

    def track_page_view(self, url: Optional[str] = None, referrer: Optional[str] = None,
                        title: Optional[str] = None) -> Optional[Event]:
        if not self.should_track():
            return None
        if url is not None:
            self.current_url = url
        if referrer is not None:
            self.referrer = referrer
        return self.track("page", "view", {"title": title, "url": self.current_url, "referrer": self.referrer})

    def track_click(self, element: Mapping[str, Any]) -> Optional[Event]:
        """``element`` describes the clicked node: tag, id, classes, text, href, x, y."""
        if not self.should_track():
            return None
        return self.track("interaction", "click", {
            "element": str(element.get("tag", "")).lower(),
            "id": element.get("id") or "",
            "classes": " ".join(element.get("classes") or []),
            "text": str(element.get("text") or "")[:50],
            "href": element.get("href") or "",
            "x": element.get("x"),
            "y": element.get("y"),
        })

    def track_form(self, form: Mapping[str, Any]) -> Optional[Event]:
        if not self.should_track():
            return None
        # field values never leave the page, only whether they were filled
        fields = [
            {"name": f["name"], "type": f.get("type") or "text", "filled": bool(f.get("value"))}
            for f in form.get("fields") or []
            if f.get("name") and not _is_password_field(f)
        ]
        return self.track("interaction", "form_submit", {
            "formId": form.get("id") or "",
            "formAction": form.get("action") or "",
            "formMethod": form.get("method") or "get",
            "formClasses": " ".join(form.get("classes") or []),
            "formFields": fields,
        })

    def track_chat_interaction(self, kind: str = "user_message", message_length: Optional[int] = None,
                               response_time: Optional[float] = None,
                               content: Optional[str] = None) -> Optional[Event]:
        data: Dict[str, Any] = {"type": kind, "messageLength": message_length, "responseTime": response_time}
        if content is not None:
            # scrubbed by sanitize() like every content field
            data["content"] = content
        return self.track("chat", kind, data)

    def track_button_click(self, name: str, context: Any = None) -> Optional[Event]:
        return self.track("button", "click", {"buttonName": name, "context": context})

    def track_engagement(self, kind: str, duration: Optional[float] = None) -> Optional[Event]:
        return self.track("engagement", kind, {"duration": duration})

    # ---------- identity & privacy ----------

    def get_session_id(self) -> str:
        return self.session_id

    def get_user_id(self) -> Optional[str]:
        if not self._user_id:
            return None
        if self.privacy.anonymize:
            return hash_identifier(self._user_id)
        return self._user_id

    def set_user_id(self, user_id: Optional[str]) -> None:
        self._user_id = user_id
        if self.privacy.cookie_consent:
            self.identity.set_user_id(user_id)
        self.track("user", "identify")

    def update_privacy_settings(self, **changes) -> None:
        changes = {k: v for k, v in changes.items() if k in PrivacySettings.model_fields}
        self.privacy = self.privacy.model_copy(update=changes)
        if "opted_out" in changes:
            self.identity.set_opted_out(bool(changes["opted_out"]))
        if self.privacy.cookie_consent:
            self.identity.set_user_id(self._user_id)
        else:
            self.identity.set_user_id(None)
        self.track("system", "privacy_update", {"settings": self.privacy.model_dump()})

    def opt_out(self) -> None:
        # same id the events carry, so ingest can match them
        hashed = self.get_user_id()
        self.privacy = self.privacy.model_copy(update={"opted_out": True})
        self.identity.set_opted_out(True)
        self.batcher.clear()
        if hashed and self.config.opt_out_endpoint and hasattr(self.transport, "post_json"):
            if not self.transport.post_json(self.config.opt_out_endpoint, {"userId": hashed}):
                logger.debug("server opt-out not confirmed")

    def opt_in(self) -> None:
        self.privacy = self.privacy.model_copy(update={"opted_out": False})
        self.identity.set_opted_out(False)

    def is_opted_out(self) -> bool:
        return self.privacy.opted_out

    def clear_data(self) -> None:
        self.batcher.clear()
        self.identity.clear()
        self.pixel_id = self.identity.get_or_create_pixel_id()
        self.session_id = self.identity.get_or_create_session_id()
        self._user_id = None
        self.privacy = self.privacy.model_copy(update={"opted_out": False})
