"""Data access for matches and tickets.

Every public method returns a ``Result`` carrying either ``data`` or
``error``, never both and never neither. Failed writes are rolled back and
logged; successful writes are published on the change feed.
"""
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import (
    DataAccessError,
    InsufficientSeats,
    InvalidData,
    NotFound,
    SeatAlreadyBooked,
    TicketingError,
)
from models import TICKET_STATUSES, Match, Ticket, db
from realtime import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)

MATCH_FIELDS = (
    "home_team",
    "away_team",
    "match_date",
    "venue",
    "ticket_price",
    "total_seats",
    "available_seats",
)
TICKET_FIELDS = ("match_id", "user_id", "seat_number", "price", "status", "phone_number")


class Result:
    __slots__ = ("data", "error")

    def __init__(self, data=None, error=None):
        if (data is None) == (error is None):
            raise ValueError("Result needs exactly one of data or error")
        self.data = data
        self.error = error

    @classmethod
    def ok(cls, data):
        return cls(data=data)

    @classmethod
    def fail(cls, error):
        return cls(error=error)

    def __iter__(self):
        # allows ``data, error = store.get_match(1)``
        return iter((self.data, self.error))

    def __repr__(self):
        if self.error is not None:
            return f"Result(error={self.error!r})"
        return f"Result(data={self.data!r})"


def _parse_date(value):
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise InvalidData(f"Invalid match date: {value!r}")


def _positive_int(data, key, minimum=0):
    try:
        value = int(data[key])
    except (KeyError, TypeError, ValueError):
        raise InvalidData(f"{key} must be a whole number")
    if value < minimum:
        raise InvalidData(f"{key} must be at least {minimum}")
    return value


def _clean_match(data, partial=False):
    unknown = set(data) - set(MATCH_FIELDS)
    if unknown:
        raise InvalidData(f"Unknown match fields: {', '.join(sorted(unknown))}")

    cleaned = {}
    for key in ("home_team", "away_team", "venue"):
        if key in data:
            value = (data[key] or "").strip()
            if not value:
                raise InvalidData(f"{key} is required")
            cleaned[key] = value
        elif not partial:
            raise InvalidData(f"{key} is required")

    if "match_date" in data:
        cleaned["match_date"] = _parse_date(data["match_date"])
    elif not partial:
        raise InvalidData("match_date is required")

    if "ticket_price" in data or not partial:
        cleaned["ticket_price"] = _positive_int(data, "ticket_price")
    if "total_seats" in data or not partial:
        cleaned["total_seats"] = _positive_int(data, "total_seats", minimum=1)
    if "available_seats" in data:
        cleaned["available_seats"] = _positive_int(data, "available_seats")
    elif not partial:
        cleaned["available_seats"] = cleaned["total_seats"]
    return cleaned


def _seat_delta(old_status, new_status):
    was_live = old_status != "cancelled"
    is_live = new_status != "cancelled"
    return int(was_live) - int(is_live)


class TicketStore:
    def __init__(self, feed=None):
        self.feed = feed or ChangeFeed()

    # =========================
    # INTERNALS
    # =========================
    def _publish(self, type_, table, new=None, old=None):
        self.feed.publish(ChangeEvent(type=type_, table=table, new=new, old=old))

    def _fail(self, error, action):
        db.session.rollback()
        if isinstance(error, TicketingError):
            logger.warning("%s failed: %s", action, error)
            return Result.fail(error)
        logger.error("%s failed: %s", action, error)
        return Result.fail(DataAccessError(str(error)))

    def _get(self, model, pk):
        row = db.session.get(model, pk)
        if row is None:
            raise NotFound(f"{model.__name__} {pk} not found")
        return row

    # =========================
    # MATCHES
    # =========================
    def list_matches(self):
        try:
            matches = Match.query.order_by(Match.match_date.asc()).all()
            return Result.ok([m.to_dict() for m in matches])
        except SQLAlchemyError as e:
            return self._fail(e, "list_matches")

    def get_match(self, match_id):
        try:
            return Result.ok(self._get(Match, match_id).to_dict())
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "get_match")

    def create_match(self, data):
        try:
            cleaned = _clean_match(data)
            if cleaned["available_seats"] > cleaned["total_seats"]:
                raise InvalidData("available_seats cannot exceed total_seats")
            match = Match(**cleaned)
            db.session.add(match)
            db.session.commit()
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "create_match")

        row = match.to_dict()
        logger.info("Created match %s: %s vs %s", match.id, match.home_team, match.away_team)
        self._publish(INSERT, "matches", new=row)
        return Result.ok(row)

    def update_match(self, match_id, data):
        try:
            match = self._get(Match, match_id)
            old = match.to_dict()
            for key, value in _clean_match(data, partial=True).items():
                setattr(match, key, value)
            if not 0 <= match.available_seats <= match.total_seats:
                raise InvalidData("available_seats must be between 0 and total_seats")
            db.session.commit()
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "update_match")

        row = match.to_dict()
        self._publish(UPDATE, "matches", new=row, old=old)
        return Result.ok(row)

    def delete_match(self, match_id):
        try:
            match = self._get(Match, match_id)
            old = match.to_dict()
            db.session.delete(match)
            db.session.commit()
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "delete_match")

        logger.info("Deleted match %s", match_id)
        self._publish(DELETE, "matches", old=old)
        return Result.ok(old)

    def update_match_available_seats(self, match_id, new_count):
        try:
            match = self._get(Match, match_id)
            old = match.to_dict()
            new_count = int(new_count)
            if not 0 <= new_count <= match.total_seats:
                raise InvalidData("available_seats must be between 0 and total_seats")
            match.available_seats = new_count
            db.session.commit()
        except (ValueError, TypeError):
            return self._fail(
                InvalidData("available_seats must be a whole number"),
                "update_match_available_seats",
            )
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "update_match_available_seats")

        row = match.to_dict()
        self._publish(UPDATE, "matches", new=row, old=old)
        return Result.ok(row)

    def _shift_seats(self, match_id, delta):
        stmt = (
            update(Match)
            .where(
                Match.id == match_id,
                Match.available_seats + delta >= 0,
                Match.available_seats + delta <= Match.total_seats,
            )
            .values(available_seats=Match.available_seats + delta)
            .execution_options(synchronize_session=False)
        )
        return db.session.execute(stmt).rowcount == 1

    def adjust_available_seats(self, match_id, delta):
        """Atomically add ``delta`` to the seat counter.

        The write only lands when the new value stays within
        ``[0, total_seats]``; otherwise ``InsufficientSeats`` is returned and
        nothing changes.
        """
        try:
            match = self._get(Match, match_id)
            old = match.to_dict()
            if not self._shift_seats(match_id, delta):
                raise InsufficientSeats()
            db.session.commit()
            db.session.refresh(match)
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "adjust_available_seats")

        row = match.to_dict()
        self._publish(UPDATE, "matches", new=row, old=old)
        return Result.ok(row)

    # =========================
    # TICKETS
    # =========================
    def list_tickets_for_match(self, match_id):
        try:
            tickets = Ticket.query.filter_by(match_id=match_id).order_by(Ticket.id.asc()).all()
            return Result.ok([t.to_dict() for t in tickets])
        except SQLAlchemyError as e:
            return self._fail(e, "list_tickets_for_match")

    def booked_seat_numbers(self, match_id):
        result = self.list_tickets_for_match(match_id)
        if result.error:
            return result
        return Result.ok({t["seat_number"] for t in result.data if t["status"] != "cancelled"})

    def list_tickets_for_user(self, user_id):
        try:
            tickets = (
                Ticket.query.filter_by(user_id=user_id)
                .order_by(Ticket.created_at.desc(), Ticket.id.desc())
                .all()
            )
            return Result.ok([t.to_dict(with_match=True) for t in tickets])
        except SQLAlchemyError as e:
            return self._fail(e, "list_tickets_for_user")

    def list_all_tickets(self):
        try:
            tickets = Ticket.query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()
            return Result.ok([t.to_dict(with_match=True) for t in tickets])
        except SQLAlchemyError as e:
            return self._fail(e, "list_all_tickets")

    def create_ticket(self, data):
        try:
            missing = [key for key in TICKET_FIELDS if data.get(key) is None]
            if missing:
                raise InvalidData(f"Missing ticket fields: {', '.join(missing)}")
            if data["status"] not in TICKET_STATUSES:
                raise InvalidData(f"Unknown ticket status {data['status']!r}")
            ticket = Ticket(**{key: data[key] for key in TICKET_FIELDS})
            db.session.add(ticket)
            db.session.commit()
        except IntegrityError:
            return self._fail(
                SeatAlreadyBooked(f"Seat {data.get('seat_number')} has already been booked"),
                "create_ticket",
            )
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "create_ticket")

        row = ticket.to_dict()
        self._publish(INSERT, "tickets", new=row)
        return Result.ok(row)

    def update_ticket_status(self, ticket_id, status, adjust_seats=True):
        """Change a ticket's status.

        Moving a live ticket to ``cancelled`` gives its seat back to the
        match counter and moving it back takes the seat again, in the same
        transaction. Pass ``adjust_seats=False`` when the counter was never
        charged for the ticket.
        """
        try:
            if status not in TICKET_STATUSES:
                raise InvalidData(f"Unknown ticket status {status!r}")
            ticket = self._get(Ticket, ticket_id)
            old = ticket.to_dict()
            match = ticket.match
            old_match = match.to_dict()
            delta = _seat_delta(old["status"], status) if adjust_seats else 0

            ticket.status = status
            # the live-seat index is checked before the counter moves
            db.session.flush()
            if delta and not self._shift_seats(match.id, delta):
                if delta < 0:
                    raise InsufficientSeats()
                logger.warning("Match %s seat counter is already at capacity", match.id)
                delta = 0
            db.session.commit()
            if delta:
                db.session.refresh(match)
        except IntegrityError:
            return self._fail(
                SeatAlreadyBooked("Another live ticket already holds that seat"),
                "update_ticket_status",
            )
        except (TicketingError, SQLAlchemyError) as e:
            return self._fail(e, "update_ticket_status")

        row = ticket.to_dict()
        self._publish(UPDATE, "tickets", new=row, old=old)
        if delta:
            self._publish(UPDATE, "matches", new=match.to_dict(), old=old_match)
        return Result.ok(row)


def get_store():
    return current_app.extensions["ticket_store"]
