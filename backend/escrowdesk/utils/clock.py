from datetime import datetime, timezone


def utcnow() -> datetime:
    # Naive UTC; every DateTime column in this backend stores naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)
