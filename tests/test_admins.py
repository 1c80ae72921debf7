from conftest import auth, run_db
from retrohall.model import profiles


def test_admin_me(client, staff, owner, user_id):
    assert client.get("/api/admin/me", headers=auth(staff)).json() == {
        "user_id": staff, "is_admin": True, "role": "staff",
    }
    assert client.get("/api/admin/me", headers=auth(owner)).json()["role"] \
        == "owner"
    me = client.get("/api/admin/me", headers=auth(user_id)).json()
    assert me["is_admin"] is False
    assert me["role"] is None
    assert client.get("/api/admin/me").status_code == 401


def test_user_management_is_owner_only(client, staff, owner):
    assert client.get("/api/admin/users", headers=auth(staff)).status_code \
        == 403
    assert client.post(
        "/api/admin/users", json={"user_id": "x"}, headers=auth(staff)
    ).status_code == 403

    items = client.get("/api/admin/users", headers=auth(owner)).json()["items"]
    assert {a["id"]: a["role"] for a in items} == {
        staff: "staff", owner: "owner",
    }


def test_promote_change_and_remove(client, owner):
    run_db(client, profiles.update_profile, "clerk", "clerk@shop.io", "Clerk")
    r = client.post(
        "/api/admin/users", json={"user_id": "clerk"}, headers=auth(owner)
    )
    assert r.json()["role"] == "staff"

    # the new admin gets back-office access at once
    assert client.get(
        "/api/admin/inventory", headers=auth("clerk")
    ).status_code == 200

    listed = {
        a["id"]: a
        for a in client.get(
            "/api/admin/users", headers=auth(owner)
        ).json()["items"]
    }
    assert listed["clerk"]["email"] == "clerk@shop.io"
    assert listed["clerk"]["display_name"] == "Clerk"

    r = client.put(
        "/api/admin/users/clerk", json={"role": "owner"}, headers=auth(owner)
    )
    assert r.json()["role"] == "owner"
    assert client.put(
        "/api/admin/users/clerk", json={"role": "boss"}, headers=auth(owner)
    ).status_code == 400
    assert client.put(
        "/api/admin/users/nobody", json={"role": "staff"}, headers=auth(owner)
    ).status_code == 404

    assert client.delete(
        "/api/admin/users/clerk", headers=auth(owner)
    ).json() == {"ok": True}
    assert client.get(
        "/api/admin/inventory", headers=auth("clerk")
    ).status_code == 403
    assert client.delete(
        "/api/admin/users/clerk", headers=auth(owner)
    ).status_code == 404


def test_owner_cannot_remove_self(client, owner):
    r = client.delete(f"/api/admin/users/{owner}", headers=auth(owner))
    assert r.status_code == 400
    assert r.json()["detail"] == "You cannot remove yourself"


def test_promote_existing_admin_updates_role(client, owner, staff):
    r = client.post(
        "/api/admin/users", json={"user_id": staff, "role": "owner"},
        headers=auth(owner),
    )
    assert r.json()["role"] == "owner"
    assert client.get("/api/admin/users", headers=auth(staff)).status_code \
        == 200


def test_timings_are_recorded(client, staff, make_product):
    make_product()
    client.get("/api/products")
    items = client.get("/api/admin/timings", headers=auth(staff)).json()
    kinds = {t["kind"] for t in items["items"]}
    assert "db.list_products" in kinds
