"""Coarse client fingerprint used to spot an attempt driven from two sessions."""

from __future__ import annotations

import hashlib
import ipaddress


def ip_prefix(ip: str | None) -> str:
    """IPv4 /24 or IPv6 /64 network of ``ip``; empty string when unparseable."""
    if not ip:
        return ""
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return ""
    prefix = 24 if address.version == 4 else 64
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


def client_signature(user_agent: str | None, ip: str | None) -> str:
    raw = f"{user_agent or ''}|{ip_prefix(ip)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
