"""
Field checks shared by the request DTOs.

Each helper raises ValueError with a caller-facing message; pydantic turns it
into a validation error before any service code runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from shared.datetime_utils import parse_datetime
from shared.validators import dedupe, normalize_ip_rule, validate_url

NAME_MIN = 3
NAME_MAX = 100
DESCRIPTION_MAX = 500
SCOPES_MAX = 50


def check_name(value: str, field: str = "name") -> str:
    value = value.strip()
    if not NAME_MIN <= len(value) <= NAME_MAX:
        raise ValueError(f"{field} must be between {NAME_MIN} and {NAME_MAX} characters")
    return value


def check_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if len(value) > DESCRIPTION_MAX:
        raise ValueError(f"description must be at most {DESCRIPTION_MAX} characters")
    return value or None


def check_string_set(
    values: list[str], field: str, *, max_items: int, required: bool = True
) -> list[str]:
    """Trim, de-duplicate and bound a set-valued string field."""
    cleaned = dedupe(values)
    if required and not cleaned:
        raise ValueError(f"{field} must be a non-empty array")
    if len(cleaned) > max_items:
        raise ValueError(f"{field} must contain at most {max_items} entries")
    return cleaned


def check_ip_rules(values: list[str], max_items: int) -> list[str]:
    if len(values) > max_items:
        raise ValueError(f"allowed_ips must contain at most {max_items} entries")
    rules: list[str] = []
    for value in values:
        rule = normalize_ip_rule(value)
        if rule is None:
            raise ValueError(f"invalid IP address or CIDR block: {value}")
        if rule not in rules:
            rules.append(rule)
    return rules


def check_url(value: str, field: str, *, max_length: int = 2000) -> str:
    value = value.strip()
    if len(value) > max_length:
        raise ValueError(f"{field} must be at most {max_length} characters")
    if not validate_url(value):
        raise ValueError(f"{field} must be a valid http(s) URL")
    return value


def coerce_datetime(value: Any) -> Optional[datetime]:
    """ISO 8601 string, Unix epoch seconds or datetime → aware UTC datetime."""
    if value is None:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError("must be an ISO 8601 datetime or Unix timestamp")
    return parsed
