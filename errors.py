"""Error taxonomy shared by the REST API and the WhatsApp pipeline."""


class BookingError(Exception):
    """Base error carrying an HTTP status and a human-readable message."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BookingError):
    status_code = 400


class AuthError(BookingError):
    status_code = 401


class ForbiddenError(BookingError):
    status_code = 403


class NotFoundError(BookingError):
    status_code = 404


class ParseFailure(BookingError):
    """Date, intent or service text could not be understood."""

    status_code = 422


class UpstreamDeliveryError(BookingError):
    """Outbound WhatsApp message could not be delivered."""

    status_code = 502


class StoreError(BookingError):
    status_code = 500
