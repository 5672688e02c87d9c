class TicketingError(Exception):
    """Base class for every error raised by the ticketing app."""

    message = "Something went wrong"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


# =========================
# AUTHORIZATION
# =========================
class AuthorizationError(TicketingError):
    pass


class NotAuthenticated(AuthorizationError):
    message = "Please sign in to book tickets"


class NotAuthorized(AuthorizationError):
    message = "You are not allowed to do that"


# =========================
# VALIDATION
# =========================
class ValidationError(TicketingError):
    pass


class NoSeatsSelected(ValidationError):
    message = "Please select at least one seat"


class InvalidPhoneNumber(ValidationError):
    message = "Please enter a valid Kenyan phone number (e.g., 0712345678)"


class SeatUnavailable(ValidationError):
    message = "That seat is not available"


# =========================
# DATA ACCESS
# =========================
class DataAccessError(TicketingError):
    message = "Could not reach the data store"


class NotFound(DataAccessError):
    message = "Record not found"


class SeatAlreadyBooked(DataAccessError):
    message = "Seat has already been booked"


class InsufficientSeats(DataAccessError):
    message = "Not enough seats left for this match"


class InvalidData(DataAccessError):
    message = "Invalid data"


# =========================
# PAYMENT
# =========================
class PaymentGatewayError(TicketingError):
    message = "Payment provider rejected the request"


class PaymentFailed(TicketingError):
    message = "Payment failed. Please try again."

    def __init__(self, message=None, cause=None):
        super().__init__(message)
        self.cause = cause


class BookingStateError(TicketingError):
    message = "That step is not available right now"
