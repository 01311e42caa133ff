import auth
from database import to_object_id

from conftest import PASSWORD


def test_profile_details(client, buyer):
    resp = client.get("/user/profile", headers=buyer["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "id": buyer["id"],
        "name": buyer["name"],
        "email": buyer["email"],
        "role": "buyer",
        "is_email_verified": False,
    }


def test_update_profile_requires_current_password(client, buyer):
    missing = client.patch("/user/profile", json={"name": "New"}, headers=buyer["headers"])
    assert missing.status_code == 422

    wrong = client.patch("/user/profile", json={"name": "New", "currentPassword": "Nope12345"}, headers=buyer["headers"])
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Incorrect password!"


def test_email_change_resets_verification(client, db, settings, mailer, buyer):
    token = auth.create_verification_token(settings, buyer)
    client.get(f"/auth/verify/{token}", headers=buyer["headers"])
    mailer.sent.clear()

    resp = client.patch(
        "/user/profile",
        json={"email": " New@Example.com", "currentPassword": PASSWORD},
        headers=buyer["headers"],
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["email"] == "new@example.com"
    assert resp.json()["data"]["is_email_verified"] is False
    assert db["user"].find_one({"_id": to_object_id(buyer["id"])})["is_email_verified"] is False
    assert [m["to"] for m in mailer.sent] == ["new@example.com"]


def test_name_change_keeps_verification(client, db, settings, mailer, buyer):
    token = auth.create_verification_token(settings, buyer)
    client.get(f"/auth/verify/{token}", headers=buyer["headers"])

    resp = client.patch(
        "/user/profile",
        json={"name": "Renamed", "email": buyer["email"], "currentPassword": PASSWORD},
        headers=buyer["headers"],
    )

    assert resp.json()["data"]["name"] == "Renamed"
    assert resp.json()["data"]["is_email_verified"] is True


def test_email_taken_by_another_user(client, make_user):
    alice = make_user()
    bob = make_user()

    resp = client.patch(
        "/user/profile",
        json={"email": bob["email"].upper(), "currentPassword": PASSWORD},
        headers=alice["headers"],
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Email already exists"


def test_all_users_is_admin_only(client, buyer, admin):
    assert client.get("/user/allusers", headers=buyer["headers"]).status_code == 403

    resp = client.get("/user/allusers", headers=admin["headers"])
    assert resp.status_code == 200
    assert {u["email"] for u in resp.json()["data"]} == {buyer["email"], admin["email"]}
    assert all("password_hash" not in u for u in resp.json()["data"])


def test_link_sent_to_previous_email_cannot_verify_new_one(client, db, settings, buyer):
    old_link_token = auth.create_verification_token(settings, buyer)
    client.patch(
        "/user/profile",
        json={"email": "moved@example.com", "currentPassword": PASSWORD},
        headers=buyer["headers"],
    )

    resp = client.get(f"/auth/verify/{old_link_token}", headers=buyer["headers"])

    assert resp.status_code == 401
    assert resp.json()["status"] == "Fail"
    assert db["user"].find_one({"_id": to_object_id(buyer["id"])})["is_email_verified"] is False

    fresh = auth.create_verification_token(settings, {"id": buyer["id"], "email": "moved@example.com"})
    assert client.get(f"/auth/verify/{fresh}", headers=buyer["headers"]).json()["data"]["outcome"] == "verified"
