from __future__ import annotations

import hashlib
import json
from functools import wraps
from typing import Any

from flask import jsonify, request
from flask_login import current_user
from sqlalchemy.exc import IntegrityError

from escrowdesk.errors import EngineError
from escrowdesk.extensions import db
from escrowdesk.models import IdempotencyKey


def _hash_request(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def lookup_response(user_id: int | None, route: str, payload: Any):
    k = get_idempotency_key()
    if not k:
        return None

    rh = _hash_request({"route": route, "payload": payload})
    row = IdempotencyKey.query.filter_by(user_id=user_id, key=k).first()
    if row:
        if row.request_hash and row.request_hash != rh:
            return ("conflict", {"ok": False, "error": "idempotency_conflict", "message": "Idempotency key reuse with different payload"}, 409)
        if row.response_json is None:
            return ("conflict", {"ok": False, "error": "idempotency_in_progress", "message": "A request with this idempotency key is still in progress"}, 409)
        return ("hit", json.loads(row.response_json), int(row.status_code or 200))

    row = IdempotencyKey(key=k, user_id=user_id, route=route, request_hash=rh)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return ("conflict", {"ok": False, "error": "idempotency_in_progress", "message": "A request with this idempotency key is still in progress"}, 409)
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_json = json.dumps(response_json, default=str)
    row.status_code = int(status_code)
    db.session.add(row)
    db.session.commit()


def forget(row: IdempotencyKey) -> None:
    """Drop a key whose call failed unexpectedly so a retry can run again."""
    db.session.rollback()
    db.session.delete(row)
    db.session.commit()


def idempotent(route: str):
    """Replay the stored response for a repeated Idempotency-Key.

    Wrapped views return ``(body, status)``. Engine errors are stored as the
    outcome of the call; anything else releases the key.
    """

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user_id = int(current_user.id) if current_user.is_authenticated else None
            payload = {"view_args": kwargs, "body": request.get_json(silent=True)}
            found = lookup_response(user_id, route, payload)
            if found is None:
                return fn(*args, **kwargs)
            kind, body, status = found
            if kind != "miss":
                return jsonify(body), status
            row = body
            try:
                result, status = fn(*args, **kwargs)
            except EngineError as exc:
                store_response(row, exc.to_dict(), exc.http_status)
                raise
            except Exception:
                forget(row)
                raise
            store_response(row, result, status)
            return jsonify(result), status

        return wrapper

    return decorator
