from __future__ import annotations

from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from escrowdesk.errors import ConcurrentModification, NotFound
from escrowdesk.extensions import db


@contextmanager
def atomic(label: str):
    """One read-check-write unit: commit on success, roll back on any error.

    Optimistic version conflicts and unique-key races become
    ``ConcurrentModification``; nothing is retried here.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        current_app.logger.warning("%s lost an optimistic race; rolled back", label)
        raise ConcurrentModification()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("%s hit a uniqueness race; rolled back", label)
        raise ConcurrentModification()
    except Exception:
        db.session.rollback()
        raise


def load_for_update(model, ident, *, what: str = "Record"):
    """Fresh row read under a row lock; never trusts the identity map."""
    row = db.session.get(model, ident, with_for_update=True, populate_existing=True)
    if row is None:
        raise NotFound(f"{what} not found")
    return row
