from datetime import datetime, timezone

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

TICKET_STATUSES = ("active", "used", "cancelled")


def _now():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=_now)

    tickets = db.relationship("Ticket", back_populates="user")


class Match(db.Model):
    __tablename__ = "matches"

    id = db.Column(db.Integer, primary_key=True)
    home_team = db.Column(db.String(50), nullable=False)
    away_team = db.Column(db.String(50), nullable=False)
    match_date = db.Column(db.DateTime, nullable=False)
    venue = db.Column(db.String(100), nullable=False)
    ticket_price = db.Column(db.Integer, nullable=False)
    total_seats = db.Column(db.Integer, nullable=False)
    available_seats = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=_now)

    tickets = db.relationship(
        "Ticket", back_populates="match", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "match_date": self.match_date,
            "venue": self.venue,
            "ticket_price": self.ticket_price,
            "total_seats": self.total_seats,
            "available_seats": self.available_seats,
            "created_at": self.created_at,
        }


class Ticket(db.Model):
    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey("matches.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    seat_number = db.Column(db.String(8), nullable=False)
    price = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)
    phone_number = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=_now)

    match = db.relationship("Match", back_populates="tickets")
    user = db.relationship("User", back_populates="tickets")

    # one live ticket per seat; cancelled rows free the seat again
    __table_args__ = (
        db.Index(
            "uq_tickets_live_seat",
            "match_id",
            "seat_number",
            unique=True,
            sqlite_where=db.text("status != 'cancelled'"),
            postgresql_where=db.text("status != 'cancelled'"),
        ),
    )

    def to_dict(self, with_match=False):
        data = {
            "id": self.id,
            "match_id": self.match_id,
            "user_id": self.user_id,
            "seat_number": self.seat_number,
            "price": self.price,
            "status": self.status,
            "phone_number": self.phone_number,
            "created_at": self.created_at,
        }
        if with_match:
            data["match"] = self.match.to_dict() if self.match else None
            data["user_email"] = self.user.email if self.user else None
        return data
