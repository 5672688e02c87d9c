from datetime import datetime

import pytest

from errors import InsufficientSeats, InvalidData, NotFound, SeatAlreadyBooked
from realtime import DELETE, INSERT, UPDATE
from store import Result
from conftest import make_match


def ticket(match, user, seat="A1", status="active"):
    return {
        "match_id": match["id"],
        "user_id": user.user_id,
        "seat_number": seat,
        "price": match["ticket_price"],
        "status": status,
        "phone_number": "+254712345678",
    }


def test_result_carries_exactly_one_side():
    assert Result.ok([]).data == []
    assert isinstance(Result.fail(NotFound()).error, NotFound)
    with pytest.raises(ValueError):
        Result()
    with pytest.raises(ValueError):
        Result(data=1, error=NotFound())


def test_result_unpacks():
    data, error = Result.ok({"id": 1})

    assert data == {"id": 1}
    assert error is None


def test_list_matches_ordered_by_date(app, ctx, store):
    make_match(app, home_team="Late", match_date=datetime(2026, 12, 1, 15))
    make_match(app, home_team="Early", match_date=datetime(2026, 10, 1, 15))

    matches, error = store.list_matches()

    assert error is None
    assert [m["home_team"] for m in matches] == ["Early", "Late"]


def test_new_match_starts_with_every_seat_available(match):
    assert match["available_seats"] == match["total_seats"] == 20


def test_get_missing_match(ctx, store):
    match, error = store.get_match(404)

    assert match is None
    assert isinstance(error, NotFound)


@pytest.mark.parametrize("bad", [
    {"home_team": ""},
    {"ticket_price": "free"},
    {"total_seats": 0},
    {"match_date": "someday"},
    {"available_seats": 21},
    {"colour": "blue"},
])
def test_create_match_rejects_bad_data(ctx, store, bad):
    data = {
        "home_team": "Tusker FC",
        "away_team": "Bandari",
        "match_date": "2026-11-02T15:00",
        "venue": "Kasarani",
        "ticket_price": 400,
        "total_seats": 20,
    }
    data.update(bad)

    result = store.create_match(data)

    assert isinstance(result.error, InvalidData)
    assert store.list_matches().data == []


def test_update_match_keeps_seat_counter_in_range(ctx, store, match):
    updated, error = store.update_match(match["id"], {"venue": "Kasarani", "ticket_price": 600})
    assert error is None
    assert updated["venue"] == "Kasarani"
    assert updated["ticket_price"] == 600

    _, error = store.update_match(match["id"], {"total_seats": 10})
    assert isinstance(error, InvalidData)
    assert store.get_match(match["id"]).data["total_seats"] == 20


def test_update_match_available_seats(ctx, store, match):
    assert store.update_match_available_seats(match["id"], 5).data["available_seats"] == 5
    assert isinstance(store.update_match_available_seats(match["id"], -1).error, InvalidData)
    assert isinstance(store.update_match_available_seats(match["id"], 21).error, InvalidData)
    assert isinstance(store.update_match_available_seats(match["id"], "x").error, InvalidData)
    assert store.get_match(match["id"]).data["available_seats"] == 5


def test_adjust_available_seats_is_bounded(ctx, store, match):
    assert store.adjust_available_seats(match["id"], -15).data["available_seats"] == 5

    _, error = store.adjust_available_seats(match["id"], -6)
    assert isinstance(error, InsufficientSeats)

    _, error = store.adjust_available_seats(match["id"], 16)
    assert isinstance(error, InsufficientSeats)

    assert store.adjust_available_seats(match["id"], 15).data["available_seats"] == 20


def test_adjust_missing_match(ctx, store):
    assert isinstance(store.adjust_available_seats(99, -1).error, NotFound)


def test_same_seat_cannot_be_booked_twice(ctx, store, match, fan):
    first = store.create_ticket(ticket(match, fan, "B2"))
    second = store.create_ticket(ticket(match, fan, "B2"))

    assert first.error is None
    assert isinstance(second.error, SeatAlreadyBooked)
    assert store.booked_seat_numbers(match["id"]).data == {"B2"}


def test_cancelled_ticket_frees_seat(ctx, store, match, fan):
    booked, _ = store.create_ticket(ticket(match, fan, "B2"))
    store.update_ticket_status(booked["id"], "cancelled")

    rebooked = store.create_ticket(ticket(match, fan, "B2"))

    assert rebooked.error is None
    assert store.booked_seat_numbers(match["id"]).data == {"B2"}
    assert len(store.list_tickets_for_match(match["id"]).data) == 2


def test_reactivating_a_rebooked_seat_fails(ctx, store, match, fan):
    old, _ = store.create_ticket(ticket(match, fan, "B2"))
    store.update_ticket_status(old["id"], "cancelled")
    store.create_ticket(ticket(match, fan, "B2"))

    _, error = store.update_ticket_status(old["id"], "active")

    assert isinstance(error, SeatAlreadyBooked)


def test_create_ticket_validates(ctx, store, match, fan):
    data = ticket(match, fan)
    del data["phone_number"]
    assert isinstance(store.create_ticket(data).error, InvalidData)
    assert isinstance(store.create_ticket(ticket(match, fan, status="pending")).error, InvalidData)


def test_update_ticket_status(ctx, store, match, fan):
    created, _ = store.create_ticket(ticket(match, fan))

    assert store.update_ticket_status(created["id"], "used").data["status"] == "used"
    assert isinstance(store.update_ticket_status(created["id"], "lost").error, InvalidData)
    assert isinstance(store.update_ticket_status(999, "used").error, NotFound)


def test_ticket_listings_include_match(ctx, store, match, fan):
    store.create_ticket(ticket(match, fan, "A1"))
    store.create_ticket(ticket(match, fan, "A2"))

    everything = store.list_all_tickets().data
    mine = store.list_tickets_for_user(fan.user_id).data

    assert [t["seat_number"] for t in everything] == ["A2", "A1"]
    assert everything[0]["match"]["home_team"] == "Gor Mahia"
    assert everything[0]["user_email"] == "fan@example.com"
    assert [t["seat_number"] for t in mine] == ["A2", "A1"]
    assert store.list_tickets_for_user(fan.user_id + 100).data == []


def test_delete_match_removes_its_tickets(ctx, store, match, fan):
    store.create_ticket(ticket(match, fan))

    deleted, error = store.delete_match(match["id"])

    assert error is None
    assert deleted["id"] == match["id"]
    assert store.list_all_tickets().data == []
    assert isinstance(store.delete_match(match["id"]).error, NotFound)


def test_writes_are_published(ctx, store, match, fan):
    events = []
    store.feed.subscribe("tickets", events.append)
    store.feed.subscribe("matches", events.append)

    created, _ = store.create_ticket(ticket(match, fan))
    store.update_ticket_status(created["id"], "used")
    store.adjust_available_seats(match["id"], -1)
    store.delete_match(match["id"])

    assert [(e.type, e.table) for e in events] == [
        (INSERT, "tickets"),
        (UPDATE, "tickets"),
        (UPDATE, "matches"),
        (DELETE, "matches"),
    ]
    assert events[1].old["status"] == "active"
    assert events[1].new["status"] == "used"
    assert events[2].new["available_seats"] == 19


def test_failed_write_is_not_published(ctx, store, match, fan):
    events = []
    store.feed.subscribe("matches", events.append)

    store.adjust_available_seats(match["id"], -21)

    assert events == []


def test_cancelling_a_ticket_gives_the_seat_back(app, ctx, store, fan):
    match = make_match(app, total_seats=1)
    sold, _ = store.create_ticket(ticket(match, fan, "A1"))
    store.adjust_available_seats(match["id"], -1)

    assert store.update_ticket_status(sold["id"], "cancelled").error is None
    assert store.get_match(match["id"]).data["available_seats"] == 1

    store.create_ticket(ticket(match, fan, "A1"))
    assert store.adjust_available_seats(match["id"], -1).error is None
    assert store.get_match(match["id"]).data["available_seats"] == 0


def test_reactivating_a_ticket_takes_the_seat_again(app, ctx, store, fan):
    match = make_match(app, total_seats=2)
    sold, _ = store.create_ticket(ticket(match, fan, "A1", status="cancelled"))
    store.adjust_available_seats(match["id"], -1)

    assert store.update_ticket_status(sold["id"], "active").error is None
    assert store.get_match(match["id"]).data["available_seats"] == 0

    store.update_ticket_status(sold["id"], "cancelled")
    store.update_ticket_status(sold["id"], "used")
    assert store.get_match(match["id"]).data["available_seats"] == 0


def test_reactivating_on_a_sold_out_match_fails(app, ctx, store, fan):
    match = make_match(app, total_seats=1)
    old, _ = store.create_ticket(ticket(match, fan, "A1", status="cancelled"))
    store.adjust_available_seats(match["id"], -1)

    _, error = store.update_ticket_status(old["id"], "active")

    assert isinstance(error, InsufficientSeats)
    assert store.list_tickets_for_match(match["id"]).data[0]["status"] == "cancelled"
    assert store.get_match(match["id"]).data["available_seats"] == 0


def test_status_change_without_seat_adjustment(app, ctx, store, fan):
    match = make_match(app, total_seats=2)
    created, _ = store.create_ticket(ticket(match, fan, "A1"))
    store.adjust_available_seats(match["id"], -1)

    store.update_ticket_status(created["id"], "cancelled", adjust_seats=False)

    assert store.get_match(match["id"]).data["available_seats"] == 1


def test_cancel_publishes_seat_counter(app, ctx, store, fan):
    match = make_match(app, total_seats=1)
    sold, _ = store.create_ticket(ticket(match, fan, "A1"))
    store.adjust_available_seats(match["id"], -1)
    events = []
    store.feed.subscribe("matches", events.append)

    store.update_ticket_status(sold["id"], "cancelled")

    assert [(e.old["available_seats"], e.new["available_seats"]) for e in events] == [(0, 1)]
