from __future__ import annotations
import hashlib
import ipaddress
from typing import Mapping, Optional


def hash_identifier(value: str, salt: str = "") -> str:
    # sha-256 hex, stable across client and server
    return hashlib.sha256(f"{salt}{value}".encode("utf-8")).hexdigest()


def anonymize_ip(raw_ip: Optional[str]) -> str:
    """
    Zero the host part of an address.
    IPv4 drops the last octet (a.b.c.0), IPv6 keeps the /64 prefix.
    """
    if not raw_ip:
        return "unknown"
    try:
        ip_obj = ipaddress.ip_address(raw_ip.strip())
    except ValueError:
        return "unknown"

    if isinstance(ip_obj, ipaddress.IPv4Address):
        net = ipaddress.IPv4Network(f"{ip_obj}/24", strict=False)
    else:
        net = ipaddress.IPv6Network(f"{ip_obj}/64", strict=False)
    return str(net.network_address)


def client_ip(headers: Mapping[str, str], fallback: Optional[str] = None) -> Optional[str]:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    fwd = headers.get("x-forwarded-for")
    if fwd:
        first = fwd.split(",")[0].strip()
        if first:
            return first
    real = headers.get("x-real-ip")
    if real:
        return real.strip()
    return fallback
