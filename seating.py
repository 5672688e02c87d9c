"""Stadium seat map and ticket pricing."""
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType

logger = logging.getLogger(__name__)

STANDARD = "STANDARD"
PREMIUM = "PREMIUM"
VIP = "VIP"

DEFAULT_MULTIPLIERS = {
    STANDARD: Decimal("1.0"),
    PREMIUM: Decimal("1.2"),
    VIP: Decimal("1.5"),
}

MAX_ROWS = 26


@dataclass(frozen=True, eq=False)
class StadiumLayout:
    rows: int
    seats_per_row: int
    vip_rows: frozenset = frozenset()
    premium_rows: frozenset = frozenset()
    multipliers: dict = field(default_factory=lambda: dict(DEFAULT_MULTIPLIERS))

    def __post_init__(self):
        if not 1 <= self.rows <= MAX_ROWS:
            raise ValueError(f"rows must be between 1 and {MAX_ROWS}, got {self.rows}")
        if self.seats_per_row < 1:
            raise ValueError("seats_per_row must be at least 1")
        object.__setattr__(self, "vip_rows", frozenset(self.vip_rows))
        object.__setattr__(self, "premium_rows", frozenset(self.premium_rows))
        object.__setattr__(self, "multipliers", MappingProxyType(dict(self.multipliers)))

    @classmethod
    def from_config(cls, config):
        return cls(
            rows=config["STADIUM_ROWS"],
            seats_per_row=config["STADIUM_SEATS_PER_ROW"],
            vip_rows=config["STADIUM_VIP_ROWS"],
            premium_rows=config["STADIUM_PREMIUM_ROWS"],
        )

    @property
    def capacity(self):
        return self.rows * self.seats_per_row

    def seat_type(self, row):
        seat_type = STANDARD
        if row in self.premium_rows:
            seat_type = PREMIUM
        # VIP is applied last so a row listed in both sets ends up VIP
        if row in self.vip_rows:
            seat_type = VIP
        return seat_type


@dataclass(frozen=True)
class Seat:
    number: str
    row: int
    seat: int
    type: str
    price_multiplier: Decimal
    available: bool = True


def seat_number(row, seat):
    return f"{chr(64 + row)}{seat}"


def generate_seat_map(total_seats, layout, booked_seat_numbers=()):
    """Build the full seat inventory for ``layout``.

    The layout's rows x seats-per-row is authoritative; ``total_seats`` is
    only compared against it.
    """
    if total_seats is not None and total_seats != layout.capacity:
        logger.debug(
            "Match has %s seats but the stadium layout holds %s", total_seats, layout.capacity
        )

    booked = set(booked_seat_numbers)
    seats = []
    for row in range(1, layout.rows + 1):
        seat_type = layout.seat_type(row)
        multiplier = layout.multipliers.get(seat_type, Decimal(1))
        for seat in range(1, layout.seats_per_row + 1):
            number = seat_number(row, seat)
            seats.append(
                Seat(
                    number=number,
                    row=row,
                    seat=seat,
                    type=seat_type,
                    price_multiplier=multiplier,
                    available=number not in booked,
                )
            )
    return seats


def calculate_ticket_price(base_price, seat_type, multipliers=None):
    multipliers = DEFAULT_MULTIPLIERS if multipliers is None else multipliers
    multiplier = Decimal(str(multipliers.get(seat_type, 1)))
    price = Decimal(str(base_price)) * multiplier
    return int(price.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_total(base_price, seats, multipliers=None):
    # each seat is rounded on its own, the same way each ticket row is priced
    return sum(calculate_ticket_price(base_price, seat.type, multipliers) for seat in seats)
