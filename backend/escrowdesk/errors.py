"""Engine error taxonomy.

Every failure the engine reports is an ``EngineError``. Each subclass carries a
stable ``code`` and an HTTP status so the blueprints can render it without
knowing which service raised it.
"""

from __future__ import annotations


class EngineError(Exception):
    code = "engine_error"
    http_status = 400
    public_message = "Request failed"

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.details = details

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            body.update(self.details)
        return body


class ValidationError(EngineError):
    code = "validation_error"
    http_status = 400
    public_message = "Invalid request"


class NotFound(EngineError):
    code = "not_found"
    http_status = 404
    public_message = "Not found"


class Forbidden(EngineError):
    code = "forbidden"
    http_status = 403
    public_message = "Forbidden"


class InvalidState(EngineError):
    code = "invalid_state"
    http_status = 409
    public_message = "Action not allowed in the current order status"


class ConcurrentModification(InvalidState):
    public_message = "Order was changed by another request; refresh and retry"


class AlreadySettled(EngineError):
    code = "already_settled"
    http_status = 409
    public_message = "Escrow already settled"


class AmountMismatch(EngineError):
    code = "amount_mismatch"
    http_status = 422
    public_message = "Amount does not match the escrowed amount"


class RevisionLimitExceeded(EngineError):
    code = "revision_limit_exceeded"
    http_status = 409
    public_message = "No revisions left on this order"


class InsufficientFunds(EngineError):
    code = "insufficient_funds"
    http_status = 402
    public_message = "Insufficient wallet balance"


class AdmissionError(EngineError):
    code = "admission_denied"
    http_status = 422
    public_message = "Order not accepted by this seller"

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message, reason=reason)
        self.reason = reason


class BuyerBlocked(AdmissionError):
    pass


# Settlement races must not leak which request won.
ORDER_ALREADY_RESOLVED = "order already resolved"


def public_settlement_error(exc: EngineError) -> EngineError:
    if isinstance(exc, (AlreadySettled, InvalidState)):
        return type(exc)(ORDER_ALREADY_RESOLVED)
    return exc
