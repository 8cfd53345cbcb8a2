from __future__ import annotations

from escrowdesk.errors import ValidationError


def parse_limit(raw, default: int, maximum: int = 500) -> int:
    """Page size from a query arg or JSON field, clamped to 1..maximum."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return int(default)
    if isinstance(raw, bool):
        raise ValidationError("limit must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer")
    return max(1, min(value, int(maximum)))
