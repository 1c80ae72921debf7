from datetime import date, datetime, timezone

from conftest import auth, run_db
from retrohall.model import analytics


def book(client, user, day, slot="7:00 PM"):
    r = client.post(
        "/api/reservations",
        json={"reservation_date": day, "time_slot": slot, "party_size": 2},
        headers=auth(user),
    )
    assert r.status_code == 200, r.text
    return r.json()["id"]


def new_event(client, staff, title, when):
    r = client.post(
        "/api/admin/events",
        json={"title": title, "location": "Shop", "date": when},
        headers=auth(staff),
    )
    return r.json()["id"]


def test_dashboard_counts(client, staff, make_product):
    make_product()
    make_product(title="Zelda")
    new_event(client, staff, "Draft", "2031-06-06 18:30")
    book(client, "a", "2031-05-17")
    rid = book(client, "b", "2031-05-17", slot="8:00 PM")
    book(client, "c", "2031-05-18")
    client.post(f"/api/admin/reservations/{rid}/cancel", headers=auth(staff))

    got = run_db(client, analytics.dashboard, today=date(2031, 5, 17))
    assert got == {
        "products": 2,
        "events": 1,
        "reservations_today": 2,
        "active_reservations": 2,
    }

    r = client.get("/api/admin/analytics/dashboard", headers=auth(staff))
    assert r.json()["products"] == 2
    assert client.get(
        "/api/admin/analytics/dashboard", headers=auth("a")
    ).status_code == 403


def test_reservation_stats(client, staff):
    book(client, "a", "2031-04-01")  # outside the window
    book(client, "b", "2031-05-10")
    done = book(client, "c", "2031-05-10", slot="5:00 PM")
    gone = book(client, "d", "2031-05-12")
    client.post(
        f"/api/admin/reservations/{done}/complete", headers=auth(staff)
    )
    client.put(
        f"/api/admin/reservations/{gone}",
        json={"status": "no_show"},
        headers=auth(staff),
    )

    stats = run_db(
        client, analytics.reservation_stats, today=date(2031, 5, 20)
    )
    assert stats["since"] == "2031-04-20"
    assert stats["total"] == 3
    assert (stats["active"], stats["completed"], stats["no_show"]) == (1, 1, 1)
    assert stats["cancelled"] == 0
    assert stats["by_day"] == [
        {"date": "2031-05-10", "count": 2},
        {"date": "2031-05-12", "count": 1},
    ]
    assert stats["by_slot"][0] == {"slot": "7:00 PM", "count": 2}


def test_top_events(client, staff):
    old = new_event(client, staff, "Old", "2031-01-01 18:00")
    busy = new_event(client, staff, "Busy", "2031-06-01 18:00")
    quiet = new_event(client, staff, "Quiet", "2031-06-08 18:00")
    for uid in ("a", "b", "c"):
        client.post(f"/api/events/{busy}/join", headers=auth(uid))
        client.post(f"/api/events/{old}/join", headers=auth(uid))
    client.post(f"/api/events/{quiet}/join", headers=auth("a"))

    now = datetime(2031, 6, 10, tzinfo=timezone.utc).timestamp()
    items = run_db(client, analytics.top_events, now=now)
    assert [(e["title"], e["attendees"]) for e in items] == [
        ("Busy", 3), ("Quiet", 1),
    ]
    assert items[0]["date"] == "2031-06-01T18:00:00+00:00"
