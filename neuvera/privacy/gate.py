from __future__ import annotations
from typing import Mapping, Optional

from pydantic import BaseModel


class PrivacySettings(BaseModel):
    do_not_track: bool = False
    cookie_consent: bool = False
    anonymize: bool = True
    # region policy; the demo never requires explicit consent
    requires_consent: bool = False
    opted_out: bool = False


def should_track(settings: PrivacySettings) -> bool:
    """Single predicate consulted before any event is created or sent.

    Opt-out beats everything. Otherwise Do-Not-Track denies, and consent is
    only needed where the policy requires it.
    """
    if settings.opted_out:
        return False
    if settings.do_not_track:
        return False
    return settings.cookie_consent or not settings.requires_consent


def do_not_track_from_headers(headers: Optional[Mapping[str, str]]) -> bool:
    if not headers:
        return False
    lowered = {str(k).lower(): str(v).strip() for k, v in headers.items()}
    return lowered.get("dnt") == "1" or lowered.get("sec-gpc") == "1"
