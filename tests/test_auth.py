"""
tests/test_auth.py
"""
from __future__ import annotations

import itertools
import time
from contextlib import contextmanager
from typing import Iterator

import pytest
from flask.testing import FlaskClient
from werkzeug.exceptions import Unauthorized

from folio.blog import (
    ADMIN_TOKEN_COOKIE,
    SingleAdminViolation,
    app,
    authenticate,
    create_admin,
    generate_admin_token,
    get_db,
    verify_admin_token,
)

from conftest import ADMIN, CSRF

_ip_counter = itertools.count(1)


@contextmanager
def _new_client() -> Iterator[FlaskClient]:
    """A client with its own REMOTE_ADDR so rate-limit windows never overlap."""
    ip = f"127.0.0.{next(_ip_counter)}"
    with app.test_client() as c, app.app_context():
        c.environ_base["REMOTE_ADDR"] = ip
        yield c


def _login(client, identifier=ADMIN["username"], password=ADMIN["password"], follow=False):
    return client.post(
        "/admin/login",
        data={"identifier": identifier, "password": password},
        follow_redirects=follow,
    )


# ───────────────────────── accounts ───────────────────────────────────
def test_single_admin_policy(admin):
    with app.app_context():
        with pytest.raises(SingleAdminViolation):
            create_admin(get_db(), username="eve", email="eve@example.com", password="x")


def test_authenticate_by_username_or_email(admin):
    with app.app_context():
        db = get_db()
        assert authenticate(ADMIN["username"], ADMIN["password"], db=db)["id"] == admin["id"]
        row = authenticate(ADMIN["email"], ADMIN["password"], db=db)
        assert row is not None
        assert authenticate(ADMIN["username"], "wrong", db=db) is None
        last = db.execute("SELECT last_login FROM admin_user").fetchone()[0]
        assert last is not None


# ───────────────────────── session login ──────────────────────────────
def test_successful_login(client, admin):
    rv = _login(client)
    assert rv.status_code == 302
    assert rv.headers["Location"].endswith("/admin")
    with client.session_transaction() as sess:
        assert sess["logged_in"] is True
        assert sess["csrf"]


def test_wrong_password(client, admin):
    rv = _login(client, password="nope")
    assert rv.status_code == 401
    assert b"Invalid credentials" in rv.data
    with client.session_transaction() as sess:
        assert "logged_in" not in sess


def test_login_rate_limited(admin):
    with _new_client() as c:
        for _ in range(5):
            assert _login(c, password="nope").status_code == 401
        rv = _login(c)
        assert rv.status_code == 429
        assert int(rv.headers["Retry-After"]) >= 1
        assert rv.headers["X-RateLimit-Remaining"] == "0"


def test_login_window_is_per_ip(admin):
    with _new_client() as c:
        for _ in range(5):
            _login(c, password="nope")
        assert _login(c).status_code == 429
    with _new_client() as other:
        assert _login(other).status_code == 302


def test_logout_clears_session(admin_client):
    admin_client.get("/admin/logout")
    with admin_client.session_transaction() as sess:
        assert "logged_in" not in sess
    assert admin_client.get("/admin").status_code == 403


# ───────────────────────── API tokens ─────────────────────────────────
def test_api_login_returns_token_and_cookie(client, admin):
    rv = client.post(
        "/api/admin/login",
        json={"username": ADMIN["username"], "password": ADMIN["password"]},
    )
    assert rv.status_code == 200
    data = rv.get_json()
    assert data["user"] == {
        "id": admin["id"],
        "username": ADMIN["username"],
        "email": ADMIN["email"],
        "role": "admin",
    }
    assert verify_admin_token(data["token"])["adminId"] == admin["id"]
    assert ADMIN_TOKEN_COOKIE in rv.headers.get("Set-Cookie", "")


def test_api_login_by_email(client, admin):
    rv = client.post(
        "/api/admin/login", json={"email": ADMIN["email"], "password": ADMIN["password"]}
    )
    assert rv.status_code == 200


def test_api_login_bad_credentials(client, admin):
    rv = client.post("/api/admin/login", json={"username": "ada", "password": "bad"})
    assert rv.status_code == 401
    assert rv.get_json() == {"error": "Invalid credentials"}


def test_api_login_missing_fields(client):
    rv = client.post("/api/admin/login", json={"username": "ada"})
    assert rv.status_code == 400
    assert "details" in rv.get_json()


def test_api_login_shares_login_rate_limit(admin):
    with _new_client() as c:
        for _ in range(5):
            c.post("/api/admin/login", json={"username": "ada", "password": "bad"})
        rv = c.post("/api/admin/login", json={"username": "ada", "password": "bad"})
        assert rv.status_code == 429
        assert rv.get_json() == {"error": "Too many requests"}


def test_bearer_and_header_tokens(client, admin):
    token = generate_admin_token(admin["id"])
    assert client.get("/api/admin/stats").status_code == 401
    assert client.get(
        "/api/admin/stats", headers={"Authorization": f"Bearer {token}"}
    ).status_code == 200
    assert client.get("/api/admin/stats", headers={"X-Admin-Token": token}).status_code == 200


def test_token_expired(client, admin, monkeypatch):
    token = generate_admin_token(admin["id"])
    real = time.time()
    monkeypatch.setattr(time, "time", lambda: real + 2 * 24 * 3600)
    with pytest.raises(Unauthorized, match="Token expired"):
        verify_admin_token(token)
    rv = client.get("/api/admin/stats", headers={"Authorization": f"Bearer {token}"})
    assert rv.status_code == 401


def test_token_forged(client, admin):
    token = generate_admin_token(admin["id"])
    payload, sig = token.rsplit(".", 1)
    bad = f"{payload}.{'B' if sig[0] == 'A' else 'A'}{sig[1:]}"
    with pytest.raises(Unauthorized, match="Invalid token"):
        verify_admin_token(bad)
    assert client.get(
        "/api/admin/stats", headers={"Authorization": f"Bearer {bad}"}
    ).status_code == 401


def test_token_for_deleted_admin_rejected(client, admin):
    token = generate_admin_token(admin["id"])
    db = get_db()
    db.execute("DELETE FROM admin_user")
    db.commit()
    rv = client.get("/api/admin/stats", headers={"Authorization": f"Bearer {token}"})
    assert rv.status_code == 401


def test_static_api_token(client, monkeypatch):
    monkeypatch.setitem(app.config, "ADMIN_API_TOKEN", "static-secret")
    assert client.get(
        "/api/admin/stats", headers={"X-Admin-Token": "static-secret"}
    ).status_code == 200
    assert client.get(
        "/api/admin/stats", headers={"X-Admin-Token": "static-secreT"}
    ).status_code == 401


def test_api_logout_drops_cookie(client, admin):
    client.post(
        "/api/admin/login",
        json={"username": ADMIN["username"], "password": ADMIN["password"]},
    )
    assert client.get("/api/admin/stats").status_code == 200  # cookie auth
    rv = client.post("/api/admin/logout")
    assert rv.get_json() == {"success": True}
    assert client.get("/api/admin/stats").status_code == 401


# ───────────────────────── CSRF + headers ─────────────────────────────
def test_session_post_requires_csrf(admin_client):
    payload = {"title": "No token", "content": "x"}
    assert admin_client.post("/api/admin/posts", json=payload).status_code == 403
    rv = admin_client.post("/api/admin/posts", json=payload, headers={"X-CSRFToken": CSRF})
    assert rv.status_code == 201


def test_security_headers(client):
    rv = client.get("/")
    assert rv.headers["X-Frame-Options"] == "DENY"
    assert rv.headers["X-Content-Type-Options"] == "nosniff"


# ───────────────────────── CLI ────────────────────────────────────────
def test_cli_init_passwd_and_seed():
    runner = app.test_cli_runner()
    res = runner.invoke(
        args=["init", "--username", "cli", "--email", "cli@example.com", "--password", "pw-1"]
    )
    assert res.exit_code == 0, res.output
    assert "Admin created" in res.output

    again = runner.invoke(
        args=["init", "--username", "x", "--email", "x@example.com", "--password", "pw"]
    )
    assert again.exit_code != 0
    assert "Only one admin account is allowed" in again.output

    res = runner.invoke(args=["passwd", "--password", "pw-2"])
    assert res.exit_code == 0
    with app.app_context():
        assert authenticate("cli", "pw-2", db=get_db()) is not None

    res = runner.invoke(args=["seed"])
    assert res.exit_code == 0
    assert "Seeded 4 records." in res.output
