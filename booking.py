"""Seat selection to payment to confirmation.

``BookingFlow`` only moves forward: SELECTING_SEATS -> ENTERING_PAYMENT ->
CONFIRMED. Ticket writes are issued one seat at a time. When one of them
fails, the tickets already written are marked cancelled and the seat counter
is left alone, so a failed submission never leaves live tickets behind.
"""
import enum
import logging

from errors import (
    BookingStateError,
    InsufficientSeats,
    InvalidPhoneNumber,
    NoSeatsSelected,
    NotAuthenticated,
    PaymentFailed,
    PaymentGatewayError,
    SeatAlreadyBooked,
    SeatUnavailable,
)
from phone import normalize_phone_number
from seating import calculate_ticket_price, calculate_total, generate_seat_map

logger = logging.getLogger(__name__)


class BookingState(str, enum.Enum):
    SELECTING_SEATS = "selecting_seats"
    ENTERING_PAYMENT = "entering_payment"
    CONFIRMED = "confirmed"


def match_summary(match):
    return {
        "id": match["id"],
        "home_team": match["home_team"],
        "away_team": match["away_team"],
        "venue": match["venue"],
        "match_date": match["match_date"].isoformat(),
    }


class BookingFlow:
    def __init__(self, match, layout, store, gateway, identity=None, booked_seats=(),
                 state=BookingState.SELECTING_SEATS, selected=(), confirmation=None):
        self.match = match
        self.layout = layout
        self.store = store
        self.gateway = gateway
        self.identity = identity
        self.seats = generate_seat_map(match["total_seats"], layout, booked_seats)
        self._seats_by_number = {seat.number: seat for seat in self.seats}
        self.state = BookingState(state)
        self.confirmation = confirmation
        self.selected = []

        for number in selected:
            seat = self._seats_by_number.get(number)
            if seat is None:
                continue
            if not seat.available and self.state != BookingState.CONFIRMED:
                logger.info("Seat %s for match %s was booked meanwhile", number, match["id"])
                continue
            self.selected.append(seat)

    @classmethod
    def load(cls, match_id, layout, store, gateway, identity=None, saved=None):
        """Fetch the match snapshot and booked set, then restore ``saved``."""
        match, error = store.get_match(match_id)
        if error:
            raise error
        booked, error = store.booked_seat_numbers(match_id)
        if error:
            raise error

        kwargs = {}
        if saved and saved.get("match_id") == match_id:
            kwargs = {
                "state": saved.get("state", BookingState.SELECTING_SEATS),
                "selected": saved.get("seats", ()),
                "confirmation": saved.get("confirmation"),
            }
        return cls(match, layout, store, gateway, identity=identity, booked_seats=booked, **kwargs)

    def to_session(self):
        return {
            "match_id": self.match["id"],
            "state": self.state.value,
            "seats": [seat.number for seat in self.selected],
            "confirmation": self.confirmation,
        }

    # =========================
    # PRICING
    # =========================
    def seat_price(self, seat):
        return calculate_ticket_price(self.match["ticket_price"], seat.type, self.layout.multipliers)

    @property
    def total_amount(self):
        return calculate_total(self.match["ticket_price"], self.selected, self.layout.multipliers)

    def is_selected(self, number):
        return any(seat.number == number for seat in self.selected)

    # =========================
    # TRANSITIONS
    # =========================
    def _require(self, state):
        if self.state != state:
            raise BookingStateError(f"Booking is {self.state.value}, expected {state.value}")

    def toggle_seat(self, number):
        self._require(BookingState.SELECTING_SEATS)
        seat = self._seats_by_number.get(number)
        if seat is None:
            raise SeatUnavailable(f"Seat {number} does not exist")
        if not seat.available:
            raise SeatUnavailable(f"Seat {number} is already booked")

        if self.is_selected(number):
            self.selected = [s for s in self.selected if s.number != number]
        else:
            self.selected.append(seat)
        return self.selected

    def proceed_to_payment(self):
        self._require(BookingState.SELECTING_SEATS)
        if self.identity is None:
            raise NotAuthenticated()
        if not self.selected:
            raise NoSeatsSelected()
        self.state = BookingState.ENTERING_PAYMENT

    def submit_payment(self, phone_number):
        self._require(BookingState.ENTERING_PAYMENT)
        if self.identity is None:
            raise NotAuthenticated()
        normalized = normalize_phone_number(phone_number)
        if normalized is None:
            raise InvalidPhoneNumber()
        if not self.selected:
            raise NoSeatsSelected()

        match_id = self.match["id"]
        seats = list(self.selected)
        total = self.total_amount
        created = []

        for seat in seats:
            ticket, error = self.store.create_ticket({
                "match_id": match_id,
                "user_id": self.identity.user_id,
                "seat_number": seat.number,
                "price": self.seat_price(seat),
                "status": "active",
                "phone_number": normalized,
            })
            if error:
                logger.warning(
                    "Ticket write for %s on match %s failed after %d of %d: %s",
                    seat.number, match_id, len(created), len(seats), error,
                )
                self._compensate(created)
                raise PaymentFailed(self._failure_message(error), cause=error)
            created.append(ticket)

        _, error = self.store.adjust_available_seats(match_id, -len(seats))
        if error:
            self._compensate(created)
            raise PaymentFailed(self._failure_message(error), cause=error)

        try:
            prompt = self.gateway.initiate_payment(normalized, total, f"MATCH{match_id}")
        except PaymentGatewayError as e:
            logger.warning("Payment prompt for match %s failed: %s", match_id, e)
            self._compensate(created, release=len(seats))
            raise PaymentFailed(cause=e) from e

        self.state = BookingState.CONFIRMED
        self.confirmation = {
            "match": match_summary(self.match),
            "seats": [seat.number for seat in seats],
            "ticket_ids": [ticket["id"] for ticket in created],
            "total_amount": total,
            "phone_number": normalized,
            "checkout_request_id": prompt.checkout_request_id,
        }
        logger.info(
            "User %s booked %s for match %s (KES %s)",
            self.identity.user_id, ", ".join(self.confirmation["seats"]), match_id, total,
        )
        return self.confirmation

    def _failure_message(self, error):
        if isinstance(error, (SeatAlreadyBooked, InsufficientSeats)):
            return f"{error.message}. Please choose different seats."
        return None

    def _compensate(self, created, release=0):
        for ticket in created:
            _, error = self.store.update_ticket_status(
                ticket["id"], "cancelled", adjust_seats=False
            )
            if error:
                logger.error("Could not cancel orphaned ticket %s: %s", ticket["id"], error)
        if release:
            _, error = self.store.adjust_available_seats(self.match["id"], release)
            if error:
                logger.error(
                    "Could not release %d seats on match %s: %s", release, self.match["id"], error
                )
