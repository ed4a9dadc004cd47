"""
Domain errors raised by services and mapped to HTTP responses in app.main.
Not-found deliberately covers "exists but not yours" as well.
"""


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(DomainError):
    status_code = 400


class NotFoundError(DomainError):
    status_code = 404


class StateConflictError(DomainError):
    """Action against an entity in a terminal or wrong state."""

    status_code = 409


class ConfigurationError(DomainError):
    status_code = 500


class PaymentGatewayError(DomainError):
    """Provider call failed. On creation the local payment has already been marked FAILED."""

    status_code = 502

    def __init__(self, message: str, payment_id: str | None = None) -> None:
        super().__init__(message)
        self.payment_id = payment_id
