from conftest import login, make_match
from store import get_store


def booked(app, match_id):
    with app.app_context():
        return get_store().list_tickets_for_match(match_id).data


def test_matches_page(app, client, match):
    make_match(app, home_team="Tusker FC", away_team="Bandari", available_seats=0)

    page = client.get("/").get_data(as_text=True)

    assert "Gor Mahia vs AFC Leopards" in page
    assert "Tusker FC vs Bandari" in page
    assert "Sold out" in page
    assert "KES 1,000.00" in page


def test_booking_page_shows_seat_map(client, match):
    page = client.get(f"/booking/{match['id']}").get_data(as_text=True)

    assert "Select Your Seats" in page
    assert ">A1<" in page
    assert ">E4<" in page


def test_unknown_match_is_404(client):
    assert client.get("/booking/999").status_code == 404


def test_anonymous_user_is_sent_to_login(client, match):
    client.post(f"/booking/{match['id']}/seats/A1")

    response = client.post(f"/booking/{match['id']}/proceed")

    assert response.status_code == 302
    assert "/login" in response.headers["Location"]
    with client.session_transaction() as sess:
        assert sess["booking"]["seats"] == ["A1"]
        assert sess["booking"]["state"] == "selecting_seats"


def test_proceed_without_seats_flashes(client, fan, match):
    login(client, "fan@example.com")

    response = client.post(f"/booking/{match['id']}/proceed", follow_redirects=True)

    assert "Please select at least one seat" in response.get_data(as_text=True)


def test_full_booking(app, client, fan, match):
    login(client, "fan@example.com")
    client.post(f"/booking/{match['id']}/seats/A1")
    client.post(f"/booking/{match['id']}/seats/C1")
    client.post(f"/booking/{match['id']}/proceed")

    page = client.get(f"/booking/{match['id']}").get_data(as_text=True)
    assert "M-Pesa Payment" in page
    assert "KES 2,500.00" in page

    response = client.post(f"/booking/{match['id']}/pay", data={"phone_number": "0712345678"})
    assert response.headers["Location"].endswith(f"/booking/{match['id']}/confirmation")

    confirmation = client.get(f"/booking/{match['id']}/confirmation").get_data(as_text=True)
    assert "A1, C1" in confirmation
    assert "KES 2,500.00" in confirmation
    assert "+254712345678" in confirmation

    tickets = booked(app, match["id"])
    assert [(t["seat_number"], t["price"]) for t in tickets] == [("A1", 1000), ("C1", 1500)]

    # confirmation is shown once, then a fresh booking starts
    assert "Select Your Seats" in client.get(f"/booking/{match['id']}").get_data(as_text=True)


def test_invalid_phone_stays_on_payment(app, client, fan, match):
    login(client, "fan@example.com")
    client.post(f"/booking/{match['id']}/seats/A1")
    client.post(f"/booking/{match['id']}/proceed")

    response = client.post(
        f"/booking/{match['id']}/pay", data={"phone_number": "12345"}, follow_redirects=True
    )

    page = response.get_data(as_text=True)
    assert "valid Kenyan phone number" in page
    assert "M-Pesa Payment" in page
    assert booked(app, match["id"]) == []


def test_booked_seat_cannot_be_toggled(app, client, fan, match):
    login(client, "fan@example.com")
    for url, data in [
        (f"/booking/{match['id']}/seats/B1", None),
        (f"/booking/{match['id']}/proceed", None),
        (f"/booking/{match['id']}/pay", {"phone_number": "0712345678"}),
    ]:
        client.post(url, data=data)
    client.get(f"/booking/{match['id']}/confirmation")

    response = client.post(f"/booking/{match['id']}/seats/B1", follow_redirects=True)

    assert "already booked" in response.get_data(as_text=True)


def test_reset_starts_over(client, fan, match):
    login(client, "fan@example.com")
    client.post(f"/booking/{match['id']}/seats/A1")
    client.post(f"/booking/{match['id']}/proceed")

    client.post(f"/booking/{match['id']}/reset")

    with client.session_transaction() as sess:
        assert "booking" not in sess


def test_my_tickets(app, client, fan, match):
    assert "/login" in client.get("/my-tickets").headers["Location"]

    login(client, "fan@example.com")
    client.post(f"/booking/{match['id']}/seats/D2")
    client.post(f"/booking/{match['id']}/proceed")
    client.post(f"/booking/{match['id']}/pay", data={"phone_number": "254712345678"})

    page = client.get("/my-tickets").get_data(as_text=True)

    assert "D2" in page
    assert "seatNumber" in page


def test_login_redirects_to_next(client, fan, match):
    response = client.post(
        "/login",
        data={"email": "fan@example.com", "password": "secret123", "next": f"/booking/{match['id']}"},
    )

    assert response.headers["Location"].endswith(f"/booking/{match['id']}")


def test_login_ignores_offsite_next(client, fan):
    response = client.post(
        "/login",
        data={"email": "fan@example.com", "password": "secret123", "next": "//evil.example.com"},
    )

    assert "evil" not in response.headers["Location"]


def test_bad_login_flashes(client, fan):
    response = client.post("/login", data={"email": "fan@example.com", "password": "nope"})

    assert response.status_code == 200
    assert "Invalid email or password" in response.get_data(as_text=True)


def test_signup(client):
    response = client.post("/signup", data={"email": "new@example.com", "password": "hunter22"})

    assert response.status_code == 302
    assert "new@example.com" in client.get("/").get_data(as_text=True)


def test_duplicate_pay_submit_keeps_stored_booking(app, client, fan, match):
    login(client, "fan@example.com")
    client.post(f"/booking/{match['id']}/seats/A1")
    client.post(f"/booking/{match['id']}/proceed")
    with client.session_transaction() as sess:
        pending = dict(sess["booking"])
    client.post(f"/booking/{match['id']}/pay", data={"phone_number": "0712345678"})

    # the second submit still carries the cookie from before the first one landed
    with client.session_transaction() as sess:
        sess["booking"] = pending
    response = client.post(f"/booking/{match['id']}/pay", data={"phone_number": "0712345678"})

    assert response.headers["Location"].endswith(f"/booking/{match['id']}")
    cookies = response.headers.getlist("Set-Cookie")
    assert not any(cookie.startswith("session=") for cookie in cookies)
    assert [t["seat_number"] for t in booked(app, match["id"])] == ["A1"]


def test_payment_step_with_taken_seats_returns_to_selection(app, client, fan, match):
    login(client, "fan@example.com")
    client.post(f"/booking/{match['id']}/seats/A1")
    client.post(f"/booking/{match['id']}/proceed")
    with client.session_transaction() as sess:
        pending = dict(sess["booking"])
    client.post(f"/booking/{match['id']}/pay", data={"phone_number": "0712345678"})
    with client.session_transaction() as sess:
        sess["booking"] = pending

    page = client.get(f"/booking/{match['id']}").get_data(as_text=True)

    assert "have just been booked" in page
    assert "Select Your Seats" in page
