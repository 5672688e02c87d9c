import csv
import io
import json
import logging
import queue
from datetime import datetime, timezone

from flask import (
    Blueprint,
    Response,
    abort,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)

from auth import admin_required
from models import TICKET_STATUSES
from phone import format_phone_number
from store import get_store

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__, url_prefix="/admin")

STREAM_TABLES = ("matches", "tickets")
KEEPALIVE_SECONDS = 15
CSV_HEADERS = ["Ticket ID", "Match", "Seat", "Price", "Status", "Customer", "Phone", "Purchase Date"]


def dashboard_stats(matches, tickets, today=None):
    today = today or datetime.now(timezone.utc).date()
    live = [t for t in tickets if t["status"] != "cancelled"]
    return {
        "total_matches": len(matches),
        "total_tickets": len(live),
        "total_revenue": sum(t["price"] or 0 for t in live),
        "today_sales": sum(
            t["price"] or 0 for t in live if t["created_at"] and t["created_at"].date() == today
        ),
        "available_seats": sum(m["available_seats"] or 0 for m in matches),
        "tickets_by_status": {
            status: sum(1 for t in tickets if t["status"] == status) for status in TICKET_STATUSES
        },
    }


def recent_activity(matches, tickets, limit=6):
    activities = []
    for ticket in tickets[:4]:
        match = ticket.get("match") or {}
        activities.append({
            "kind": "sale",
            "text": f"Seat {ticket['seat_number']} sold for "
                    f"{match.get('home_team')} vs {match.get('away_team')}",
            "at": ticket["created_at"],
        })
    for match in sorted(matches, key=lambda m: m["created_at"] or datetime.min, reverse=True)[:2]:
        activities.append({
            "kind": "match",
            "text": f"Match added: {match['home_team']} vs {match['away_team']}",
            "at": match["created_at"],
        })
    activities.sort(key=lambda a: a["at"] or datetime.min, reverse=True)
    return activities[:limit]


def filter_tickets(tickets, search="", status="all"):
    needle = (search or "").strip().lower()

    def matches_search(ticket):
        if not needle:
            return True
        match = ticket.get("match") or {}
        haystack = (
            match.get("home_team"),
            match.get("away_team"),
            ticket.get("seat_number"),
            ticket.get("user_email"),
        )
        return any(needle in (value or "").lower() for value in haystack)

    return [
        t for t in tickets
        if matches_search(t) and (status in (None, "", "all") or t["status"] == status)
    ]


def tickets_csv(tickets):
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_HEADERS)
    for t in tickets:
        match = t.get("match") or {}
        writer.writerow([
            t["id"],
            f"{match.get('home_team')} vs {match.get('away_team')}",
            t["seat_number"],
            t["price"],
            t["status"],
            t.get("user_email") or "",
            format_phone_number(t["phone_number"]),
            t["created_at"].strftime("%Y-%m-%d %H:%M") if t["created_at"] else "",
        ])
    return out.getvalue()


def _match_form():
    data = {key: request.form.get(key, "").strip() for key in
            ("home_team", "away_team", "venue", "ticket_price", "total_seats")}
    data["match_date"] = datetime.strptime(request.form["match_date"], "%Y-%m-%dT%H:%M")
    return data


# =========================
# DASHBOARD
# =========================
@bp.route("/")
@admin_required
def dashboard():
    store = get_store()
    matches, error = store.list_matches()
    tickets, ticket_error = store.list_all_tickets()
    if error or ticket_error:
        flash("Failed to load dashboard data", "error")
        matches, tickets = matches or [], tickets or []
    return render_template(
        "admin/dashboard.html",
        stats=dashboard_stats(matches, tickets),
        activities=recent_activity(matches, tickets),
    )


# =========================
# MATCHES
# =========================
@bp.route("/matches", methods=["GET", "POST"])
@admin_required
def matches():
    store = get_store()

    if request.method == "POST":
        try:
            data = _match_form()
        except (KeyError, ValueError):
            flash("Please enter the kickoff date and time", "error")
            return redirect(url_for("admin.matches"))

        _, error = store.create_match(data)
        if error:
            flash(f"Failed to create match: {error.message}", "error")
        else:
            flash("Match created", "success")
        return redirect(url_for("admin.matches"))

    rows, error = store.list_matches()
    if error:
        flash("Failed to load matches", "error")
        rows = []
    return render_template("admin/matches.html", matches=rows)


@bp.route("/matches/<int:match_id>/edit", methods=["GET", "POST"])
@admin_required
def edit_match(match_id):
    store = get_store()
    match, error = store.get_match(match_id)
    if error:
        abort(404)

    if request.method == "POST":
        try:
            data = _match_form()
        except (KeyError, ValueError):
            flash("Please enter the kickoff date and time", "error")
            return redirect(url_for("admin.edit_match", match_id=match_id))

        _, error = store.update_match(match_id, data)
        if error:
            flash(f"Failed to update match: {error.message}", "error")
            return redirect(url_for("admin.edit_match", match_id=match_id))
        flash("Match updated", "success")
        return redirect(url_for("admin.matches"))

    return render_template("admin/match_form.html", match=match)


@bp.route("/matches/<int:match_id>/seats", methods=["POST"])
@admin_required
def set_available_seats(match_id):
    _, error = get_store().update_match_available_seats(
        match_id, request.form.get("available_seats")
    )
    if error:
        flash(f"Failed to update seats: {error.message}", "error")
    else:
        flash("Available seats updated", "success")
    return redirect(url_for("admin.matches"))


@bp.route("/matches/<int:match_id>/delete", methods=["POST"])
@admin_required
def delete_match(match_id):
    _, error = get_store().delete_match(match_id)
    if error:
        flash(f"Failed to delete match: {error.message}", "error")
    else:
        flash("Match deleted", "success")
    return redirect(url_for("admin.matches"))


# =========================
# TICKETS
# =========================
def _filtered_tickets():
    tickets, error = get_store().list_all_tickets()
    if error:
        flash("Failed to load tickets", "error")
        tickets = []
    return filter_tickets(tickets, request.args.get("q", ""), request.args.get("status", "all"))


@bp.route("/tickets")
@admin_required
def tickets():
    return render_template(
        "admin/tickets.html",
        tickets=_filtered_tickets(),
        statuses=TICKET_STATUSES,
        search=request.args.get("q", ""),
        status=request.args.get("status", "all"),
    )


@bp.route("/tickets/<int:ticket_id>/status", methods=["POST"])
@admin_required
def update_ticket_status(ticket_id):
    _, error = get_store().update_ticket_status(ticket_id, request.form.get("status"))
    if error:
        flash(f"Failed to update ticket status: {error.message}", "error")
    return redirect(request.referrer or url_for("admin.tickets"))


@bp.route("/tickets/export.csv")
@admin_required
def export_tickets():
    filename = f"tickets-export-{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        tickets_csv(_filtered_tickets()),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# =========================
# LIVE CHANGES
# =========================
def sse_message(event):
    payload = json.dumps(event.to_dict(), default=str)
    return f"event: {event.type.lower()}\ndata: {payload}\n\n"


@bp.route("/stream/<table>")
@admin_required
def stream(table):
    if table not in STREAM_TABLES:
        abort(404)

    events = queue.Queue()
    unsubscribe = get_store().feed.subscribe(table, events.put)

    def generate():
        try:
            yield ": connected\n\n"
            while True:
                try:
                    event = events.get(timeout=KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield sse_message(event)
        finally:
            unsubscribe()

    return Response(generate(), mimetype="text/event-stream", headers={"Cache-Control": "no-cache"})
