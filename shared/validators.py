"""
Input validators — framework-agnostic, pure functions.

Used by the request DTOs; anything that needs stored state (key quotas,
registered redirect URIs) is checked in the service layer instead.
"""

from __future__ import annotations

import ipaddress
from typing import Iterable, Optional
from urllib.parse import urlsplit

import validators as _validators


def validate_url(url: str, *, allow_simple_host: bool = True) -> bool:
    """Return True if *url* is a well-formed http(s) URL.

    Args:
        url: The URL string to validate.
        allow_simple_host: Accept single-label hosts such as ``localhost``.
            Webhook endpoints and redirect URIs in development use them.
    """
    if not url:
        return False
    if urlsplit(url).scheme not in ("http", "https"):
        return False
    return bool(_validators.url(url, simple_host=allow_simple_host))


def normalize_ip_rule(value: str) -> Optional[str]:
    """Return the canonical form of an IP address or CIDR block, or None."""
    value = value.strip()
    try:
        if "/" in value:
            return str(ipaddress.ip_network(value, strict=False))
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


def ip_allowed(client_ip: Optional[str], rules: Iterable[str]) -> bool:
    """True when *client_ip* matches any address or CIDR in *rules*."""
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip.strip())
    except ValueError:
        return False
    for rule in rules:
        try:
            if address in ipaddress.ip_network(rule, strict=False):
                return True
        except ValueError:
            continue
    return False


def dedupe(values: Iterable[str]) -> list[str]:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        value = value.strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)
