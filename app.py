import json
import logging
import os
import time
from datetime import datetime, timedelta

import click
from flask import (
    Blueprint,
    Flask,
    abort,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_login import login_required

import admin
from auth import (
    SIGNED_OUT,
    current_identity,
    get_current_session,
    grant_admin,
    login_manager,
    on_auth_state_change,
    sign_in,
    sign_out,
    sign_up,
)
from booking import BookingFlow, BookingState
from config import Config
from errors import (
    AuthorizationError,
    BookingStateError,
    DataAccessError,
    NoSeatsSelected,
    NotFound,
    PaymentFailed,
    ValidationError,
)
from models import db
from payments import build_gateway, get_gateway
from phone import format_phone_number
from realtime import ChangeFeed
from seating import StadiumLayout
from store import TicketStore, get_store

logger = logging.getLogger(__name__)

site = Blueprint("site", __name__)

BOOKING_KEY = "booking"


def qr_payload(ticket_id, match_id, seat_number):
    return json.dumps({
        "ticketId": ticket_id,
        "matchId": match_id,
        "seatNumber": seat_number,
        "timestamp": int(time.time() * 1000),
    })


def _safe_next(target):
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return None


# =========================
# MATCHES
# =========================
@site.route("/")
@site.route("/matches")
def matches():
    rows, error = get_store().list_matches()
    if error:
        flash("Failed to load matches", "error")
        rows = []
    return render_template("matches.html", matches=rows)


# =========================
# BOOKING
# =========================
def _load_flow(match_id):
    saved = session.get(BOOKING_KEY)
    try:
        return BookingFlow.load(
            match_id,
            current_app.extensions["stadium_layout"],
            get_store(),
            get_gateway(),
            identity=current_identity(),
            saved=saved,
        )
    except NotFound:
        abort(404)


def _save_flow(flow):
    session[BOOKING_KEY] = flow.to_session()


@site.route("/booking/<int:match_id>")
def booking(match_id):
    flow = _load_flow(match_id)
    if flow.state == BookingState.CONFIRMED:
        return redirect(url_for("site.confirmation", match_id=match_id))
    if flow.state == BookingState.ENTERING_PAYMENT and not flow.selected:
        flow.state = BookingState.SELECTING_SEATS
        flash("The seats you picked have just been booked. Please choose again.", "error")
    _save_flow(flow)
    return render_template("booking.html", flow=flow, match=flow.match)


@site.route("/booking/<int:match_id>/seats/<seat_number>", methods=["POST"])
def toggle_seat(match_id, seat_number):
    flow = _load_flow(match_id)
    try:
        flow.toggle_seat(seat_number)
    except (ValidationError, BookingStateError) as e:
        flash(e.message, "error")
    _save_flow(flow)
    return redirect(url_for("site.booking", match_id=match_id))


@site.route("/booking/<int:match_id>/proceed", methods=["POST"])
def proceed_to_payment(match_id):
    flow = _load_flow(match_id)
    try:
        flow.proceed_to_payment()
    except AuthorizationError as e:
        _save_flow(flow)
        flash(e.message, "error")
        return redirect(url_for("site.login", next=url_for("site.booking", match_id=match_id)))
    except (ValidationError, BookingStateError) as e:
        flash(e.message, "error")
    _save_flow(flow)
    return redirect(url_for("site.booking", match_id=match_id))


@site.route("/booking/<int:match_id>/pay", methods=["POST"])
def pay(match_id):
    flow = _load_flow(match_id)
    try:
        flow.submit_payment(request.form.get("phone_number", ""))
    except AuthorizationError as e:
        flash(e.message, "error")
        return redirect(url_for("site.login", next=url_for("site.booking", match_id=match_id)))
    except NoSeatsSelected:
        # the restored selection was booked since the form loaded, possibly by a
        # duplicate submit of this same form; the stored booking is left as is
        return redirect(url_for("site.booking", match_id=match_id))
    except (ValidationError, BookingStateError) as e:
        flash(e.message, "error")
    except PaymentFailed as e:
        logger.error("Payment for match %s failed: %s", match_id, e.cause or e)
        flash(e.message, "error")
    _save_flow(flow)

    if flow.state == BookingState.CONFIRMED:
        return redirect(url_for("site.confirmation", match_id=match_id))
    return redirect(url_for("site.booking", match_id=match_id))


@site.route("/booking/<int:match_id>/reset", methods=["POST"])
def reset_booking(match_id):
    session.pop(BOOKING_KEY, None)
    return redirect(url_for("site.booking", match_id=match_id))


@site.route("/booking/<int:match_id>/confirmation")
def confirmation(match_id):
    saved = session.get(BOOKING_KEY) or {}
    if saved.get("match_id") != match_id or saved.get("state") != BookingState.CONFIRMED.value:
        return redirect(url_for("site.booking", match_id=match_id))
    # a finished booking is shown once; the next visit starts a new one
    session.pop(BOOKING_KEY, None)
    return render_template("confirmation.html", confirmation=saved["confirmation"])


@site.route("/my-tickets")
@login_required
def my_tickets():
    identity = current_identity()
    tickets, error = get_store().list_tickets_for_user(identity.user_id)
    if error:
        flash("Failed to load your tickets", "error")
        tickets = []
    for ticket in tickets:
        ticket["qr"] = qr_payload(ticket["id"], ticket["match_id"], ticket["seat_number"])
    return render_template("my_tickets.html", tickets=tickets)


# =========================
# AUTH
# =========================
@site.route("/login", methods=["GET", "POST"])
def login():
    next_url = _safe_next(request.values.get("next"))
    if request.method == "POST":
        _, error = sign_in(request.form.get("email"), request.form.get("password"))
        if not error:
            return redirect(next_url or url_for("site.matches"))
        flash(error.message, "error")
    return render_template("login.html", next=next_url)


@site.route("/signup", methods=["GET", "POST"])
def signup():
    next_url = _safe_next(request.values.get("next"))
    if request.method == "POST":
        _, error = sign_up(request.form.get("email"), request.form.get("password"))
        if not error:
            flash("Account created", "success")
            return redirect(next_url or url_for("site.matches"))
        flash(error.message, "error")
    return render_template("signup.html", next=next_url)


@site.route("/logout", methods=["GET", "POST"])
def logout():
    sign_out()
    return redirect(url_for("site.matches"))


# =========================
# TEMPLATE HELPERS
# =========================
def format_currency(amount):
    return f"KES {amount or 0:,.2f}"


def format_datetime(value, fmt="%d %B %Y, %H:%M"):
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value.strftime(fmt) if value else ""


def _inject_session():
    identity, _ = get_current_session()
    return {"identity": identity}


def _data_error(error):
    logger.error("Data store error on %s: %s", request.path, error)
    flash("Something went wrong loading that page. Please try again.", "error")
    return redirect(url_for("site.matches"))


def _on_auth_change(event, identity):
    if event == SIGNED_OUT:
        session.pop(BOOKING_KEY, None)
        logger.info("Signed out")
    else:
        logger.info("Signed in as %s", identity.email)


# =========================
# CLI
# =========================
@click.command("init-db")
def init_db_command():
    """Create all tables."""
    db.create_all()
    click.echo("Database tables created")


@click.command("grant-admin")
@click.argument("email")
@click.option("--revoke", is_flag=True, help="Remove the admin role instead.")
def grant_admin_command(email, revoke):
    """Give an existing account access to the admin panel."""
    identity, error = grant_admin(email, admin=not revoke)
    if error:
        raise click.ClickException(error.message)
    click.echo(f"{identity.email}: admin={identity.is_admin}")


@click.command("seed-matches")
def seed_matches_command():
    """Add a few upcoming fixtures."""
    store = get_store()
    kickoff = datetime.now().replace(hour=15, minute=0, second=0, microsecond=0)
    fixtures = [
        ("Gor Mahia", "AFC Leopards", "Nyayo National Stadium", 500),
        ("Tusker FC", "Kakamega Homeboyz", "Kasarani Stadium", 400),
        ("Harambee Stars", "Uganda Cranes", "Moi International Sports Centre", 1000),
    ]
    capacity = current_app.extensions["stadium_layout"].capacity
    for days, (home, away, venue, price) in enumerate(fixtures, start=3):
        _, error = store.create_match({
            "home_team": home,
            "away_team": away,
            "venue": venue,
            "match_date": kickoff + timedelta(days=days),
            "ticket_price": price,
            "total_seats": capacity,
        })
        if error:
            raise click.ClickException(error.message)
    click.echo(f"Seeded {len(fixtures)} matches")


# =========================
# APP FACTORY
# =========================
def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db.init_app(app)
    login_manager.init_app(app)

    app.extensions["stadium_layout"] = StadiumLayout.from_config(app.config)
    app.extensions["ticket_store"] = TicketStore(ChangeFeed())
    app.extensions["payment_gateway"] = build_gateway(app.config)
    app.extensions["auth_unsubscribe"] = on_auth_state_change(_on_auth_change, sender=app)

    app.register_blueprint(site)
    app.register_blueprint(admin.bp)

    app.add_template_filter(format_currency, "currency")
    app.add_template_filter(format_datetime, "datetime")
    app.add_template_filter(format_phone_number, "phone")
    app.context_processor(_inject_session)
    app.register_error_handler(DataAccessError, _data_error)

    app.cli.add_command(init_db_command)
    app.cli.add_command(grant_admin_command)
    app.cli.add_command(seed_matches_command)

    logger.info("App ready (M-Pesa: %s)", app.config.get("MPESA_ENV"))
    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 10000))
    create_app().run(host="0.0.0.0", port=port)
