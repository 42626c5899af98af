from datetime import timedelta

from echo_admin import auth, models
from echo_admin.sessions import utcnow


def test_login_rejects_bad_password(client, login):
    login("admin")
    r = client.post("/auth/login", json={"email": "admin@zingfm.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Authorization failed: invalid credentials."


def test_me_returns_session_context_and_menu(client, login):
    headers = login("marketer")
    r = client.get("/auth/me", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["role"] == "marketer"
    assert [item["label"] for item in body["menu"]] == ["Dashboard", "Marketing"]


def test_missing_token_is_rejected(client):
    r = client.get("/api/menu")
    assert r.status_code in (401, 403)


def test_idle_session_is_signed_out(client, login, db):
    headers = login("editor")
    session = db.query(models.StaffSession).one()
    session.last_seen_at = utcnow() - timedelta(minutes=11)
    db.commit()

    r = client.get("/api/menu", headers=headers)
    assert r.status_code == 401
    assert r.json()["detail"] == "Session expired due to inactivity."
    assert r.headers["location"] == "/auth/login"

    db.expire_all()
    session = db.query(models.StaffSession).one()
    assert session.end_reason == "idle"
    assert session.ended_at is not None

    r = client.get("/api/menu", headers=headers)
    assert r.status_code == 401


def test_heartbeat_keeps_session_alive(client, login, db):
    headers = login("editor")
    session = db.query(models.StaffSession).one()
    session.last_seen_at = utcnow() - timedelta(minutes=9)
    db.commit()

    r = client.post("/auth/heartbeat", headers=headers)
    assert r.status_code == 200
    assert r.json()["idle_timeout_seconds"] == 600

    db.expire_all()
    session = db.query(models.StaffSession).one()
    assert session.ended_at is None
    assert client.get("/api/menu", headers=headers).status_code == 200


def test_logout_ends_session(client, login):
    headers = login("admin")
    assert client.post("/auth/logout", headers=headers).status_code == 200
    r = client.get("/auth/me", headers=headers)
    assert r.status_code == 401


def test_role_gates_sections(client, login):
    editor = login("editor")
    assert client.get("/api/users", headers=editor).status_code == 403
    assert client.get("/api/settings", headers=editor).status_code == 403
    assert client.get("/api/marketing/notifications", headers=editor).status_code == 403
    assert client.get("/api/stories", headers=editor).status_code == 200

    marketer = login("marketer")
    assert client.get("/api/stories", headers=marketer).status_code == 403
    assert client.get("/api/dashboard", headers=marketer).status_code == 200


def test_bootstrap_admin_created_once(db, monkeypatch):
    monkeypatch.setattr(auth.settings, "BOOTSTRAP_ADMIN_EMAIL", "Root@ZingFM.com")
    monkeypatch.setattr(auth.settings, "BOOTSTRAP_ADMIN_PASSWORD", "first-run")

    first = auth.ensure_bootstrap_admin(db)
    second = auth.ensure_bootstrap_admin(db)
    assert first.id == second.id
    assert first.role == "admin"
    assert auth.authenticate(db, "root@zingfm.com", "first-run") is not None
