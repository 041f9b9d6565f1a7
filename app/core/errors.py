"""
Domain errors for the settlement core.

Each error carries the HTTP status it maps to and a short machine code so
the Mini App can tell "ask the creator to add a wallet" apart from "wait for
your payment to confirm".
"""


class SettlementError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"


class ConflictError(SettlementError):
    status_code = 409
    code = "conflict"


class ConfigurationError(SettlementError):
    """Something outside the payer's control must be configured first."""
    status_code = 422
    code = "configuration_error"


class InvalidInputError(SettlementError):
    status_code = 400
    code = "invalid_input"


class AccessDeniedError(SettlementError):
    status_code = 403
    code = "access_denied"
