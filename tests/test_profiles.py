from conftest import auth, run_db
from retrohall.model import profiles
from retrohall.model.db import UserProfile


def test_profile_defaults_before_first_save(client, user_id):
    r = client.get("/api/me/profile", headers=auth(user_id))
    assert r.status_code == 200
    p = r.json()
    assert p["id"] == user_id
    assert p["email"] == f"{user_id}@example.com"
    assert p["display_name"] == ""
    assert p["trade_in_credit"] == 0.0
    assert p["total_sales"] == 0


def test_update_profile_keeps_shop_fields(client, user_id):
    async def give_credit(db):
        async with db.gated():
            async with db.session.begin():
                db.session.add(UserProfile(
                    id=user_id, email="", trade_in_credit=12.5, total_sales=3,
                ))

    run_db(client, give_credit)
    r = client.put(
        "/api/me/profile",
        json={"display_name": "  Ada  ", "bio": "Collector"},
        headers=auth(user_id),
    )
    p = r.json()
    assert p["display_name"] == "Ada"
    assert p["bio"] == "Collector"
    assert p["trade_in_credit"] == 12.5
    assert p["total_sales"] == 3
    # an empty email is filled from the token
    assert p["email"] == f"{user_id}@example.com"

    assert client.put(
        "/api/me/profile", json={"display_name": " "}, headers=auth(user_id)
    ).status_code == 400


def test_register_push_token(client, user_id):
    r = client.post(
        "/api/me/push-token",
        json={"token": "ExponentPushToken[xyz]"},
        headers=auth(user_id),
    )
    assert r.json() == {"ok": True}
    p = run_db(client, profiles.get_profile, user_id)
    assert p["expo_push_token"] == "ExponentPushToken[xyz]"

    assert client.post(
        "/api/me/push-token", json={"token": ""}, headers=auth(user_id)
    ).status_code == 400


def test_listings(client, user_id):
    r = client.post(
        "/api/me/listings",
        json={"title": "Virtual Boy", "system": "VB", "asking_price": 150,
              "category": "Consoles", "condition": "Fair"},
        headers=auth(user_id),
    )
    assert r.status_code == 200
    listing = r.json()
    assert listing["status"] == "active"
    assert listing["asking_price"] == 150.0

    items = client.get("/api/me/listings", headers=auth(user_id)).json()
    assert [i["id"] for i in items["items"]] == [listing["id"]]
    assert client.get(
        "/api/me/listings", headers=auth("other")
    ).json()["items"] == []

    # only the seller can withdraw it
    assert client.delete(
        f"/api/me/listings/{listing['id']}", headers=auth("other")
    ).status_code == 404
    assert client.delete(
        f"/api/me/listings/{listing['id']}", headers=auth(user_id)
    ).json() == {"ok": True}


def test_listing_validation(client, user_id):
    def post(**fields):
        body = {"title": "Game Gear", "system": "GG", "asking_price": 40}
        body.update(fields)
        return client.post(
            "/api/me/listings", json=body, headers=auth(user_id)
        )

    assert post(asking_price=0).status_code == 400
    assert post(asking_price=None).status_code == 400
    assert post(title=" ").status_code == 400
    assert post(condition="Broken").status_code == 400
    assert post(category="Food").status_code == 400


def test_notifications_are_private(client, staff):
    ev = client.post(
        "/api/admin/events",
        json={"title": "Draft", "location": "Shop", "date": "2031-06-06 18:30"},
        headers=auth(staff),
    ).json()
    client.post(f"/api/events/{ev['id']}/join", headers=auth("a"))
    note = client.get(
        "/api/notifications", headers=auth("a")
    ).json()["items"][0]

    assert client.delete(
        f"/api/notifications/{note['id']}", headers=auth("b")
    ).status_code == 404
    assert client.delete(
        f"/api/notifications/{note['id']}", headers=auth("a")
    ).json() == {"ok": True}
    assert client.get(
        "/api/notifications", headers=auth("a")
    ).json()["items"] == []
