from __future__ import annotations

import threading
from datetime import timedelta

from flask import current_app

from escrowdesk.errors import EngineError
from escrowdesk.models import DesignOrder, OrderStatus
from escrowdesk.services import orders
from escrowdesk.utils.clock import utcnow


_tick_lock = threading.Lock()
_last_tick_at = None


def _due_for_auto_confirm(now, limit: int) -> list[int]:
    rows = (
        DesignOrder.query.with_entities(DesignOrder.id)
        .filter(
            DesignOrder.status.in_((OrderStatus.DELIVERED, OrderStatus.PENDING_CONFIRM)),
            DesignOrder.confirm_due_at.isnot(None),
            DesignOrder.confirm_due_at <= now,
        )
        .order_by(DesignOrder.confirm_due_at.asc())
        .limit(int(limit))
        .all()
    )
    return [int(r[0]) for r in rows]


def _due_for_window(now, limit: int) -> list[int]:
    rows = (
        DesignOrder.query.with_entities(DesignOrder.id)
        .filter(
            DesignOrder.status == OrderStatus.DELIVERED,
            DesignOrder.visible_delivered_at.isnot(None),
            DesignOrder.visible_delivered_at <= now,
        )
        .order_by(DesignOrder.visible_delivered_at.asc())
        .limit(int(limit))
        .all()
    )
    return [int(r[0]) for r in rows]


def run_escrow_sweep(*, now=None, limit: int | None = None) -> dict:
    """Apply time-driven order transitions.

    Rules:
      - delivered orders whose confirmation window has elapsed are completed and
        their escrow released (auto-confirm).
      - delivered orders whose delivery is now visible to the buyer move to
        pending_confirm.
    Each order is its own transaction; a rejected or failed order is counted and
    the sweep moves on.
    """
    now = now or utcnow()
    limit = int(limit or current_app.config["ESCROW_SWEEP_LIMIT"])

    processed = 0
    auto_confirmed = 0
    windows_opened = 0
    skipped = 0
    errors = 0

    confirm_ids = _due_for_auto_confirm(now, limit)
    for order_id in confirm_ids:
        processed += 1
        try:
            orders.auto_confirm(order_id, now=now)
            auto_confirmed += 1
        except EngineError as exc:
            # Someone else moved the order first (confirm, revision, dispute).
            current_app.logger.info("sweep skipped auto-confirm order_id=%s: %s", order_id, exc.message)
            skipped += 1
        except Exception:
            current_app.logger.exception("sweep auto-confirm failed order_id=%s", order_id)
            errors += 1

    done = set(confirm_ids)
    for order_id in _due_for_window(now, limit):
        if order_id in done:
            continue
        processed += 1
        try:
            orders.open_confirmation_window(order_id, now=now)
            windows_opened += 1
        except EngineError as exc:
            current_app.logger.info("sweep skipped confirmation window order_id=%s: %s", order_id, exc.message)
            skipped += 1
        except Exception:
            current_app.logger.exception("sweep confirmation window failed order_id=%s", order_id)
            errors += 1

    if processed:
        current_app.logger.info(
            "escrow sweep processed=%s auto_confirmed=%s windows_opened=%s skipped=%s errors=%s",
            processed,
            auto_confirmed,
            windows_opened,
            skipped,
            errors,
        )
    return {
        "ok": True,
        "processed": processed,
        "auto_confirmed": auto_confirmed,
        "windows_opened": windows_opened,
        "skipped": skipped,
        "errors": errors,
        "ts": now.isoformat(),
    }


def should_run(last_run_at, now, min_interval_seconds: int) -> bool:
    if last_run_at is None:
        return True
    return (now - last_run_at) >= timedelta(seconds=int(min_interval_seconds))


def tick(*, now=None) -> dict | None:
    """Throttled sweep for the before-request hook; None when not due."""
    global _last_tick_at
    now = now or utcnow()
    with _tick_lock:
        if not should_run(_last_tick_at, now, current_app.config["ESCROW_SWEEP_INTERVAL_SECONDS"]):
            return None
        _last_tick_at = now
    return run_escrow_sweep(now=now)
