"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# The single-file app lives here:
from folio.blog import (
    app,
    create_admin,
    generate_admin_token,
    get_db,
    init_db,
    rate_limit_store,
)

ADMIN = {"username": "ada", "email": "ada@example.com", "password": "correct horse"}
CSRF = "test-token"

# children first so deletes never trip a foreign key
_WIPE_ORDER = (
    "chat_message",
    "chat_session",
    "page_visit",
    "visitor_session",
    "counter",
    "post_tag",
    "project_tag",
    "post",
    "blog_series",
    "project",
    "tag",
    "settings",
    "admin_user",
)


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    return tmp_path_factory.mktemp("data") / "test.sqlite3"


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
        SESSION_COOKIE_SECURE=False,
        ADMIN_API_TOKEN="",
        RATE_LIMIT_ENABLED=True,
        RATE_LIMIT_FALLBACK_POLICY="permissive",
    )
    with app.app_context():
        init_db()


@pytest.fixture(autouse=True, scope="session")
def _fast_clock():
    """
    Patch folio.blog.utc_now for the whole session so every call returns an
    ever-increasing timestamp. Newer rows always sort first, no sleeps needed.
    """
    from folio import blog

    counter = itertools.count()
    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)

    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(blog, "utc_now", _fake_now)
    yield
    mp.undo()


@pytest.fixture(autouse=True)
def _clean_state():
    """Every test starts from an empty database and a fresh rate-limit store."""
    with app.app_context():
        db = get_db()
        for tbl in _WIPE_ORDER:
            db.execute(f"DELETE FROM {tbl}")
        db.commit()
        init_db()  # re-seed default settings
    rate_limit_store().reset()
    yield


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def admin() -> dict:
    with app.app_context():
        return create_admin(get_db(), **ADMIN)


@pytest.fixture
def admin_client(client, admin) -> FlaskClient:
    """A client with a logged-in admin session (CSRF token = ``CSRF``)."""
    with client.session_transaction() as sess:
        sess["logged_in"] = True
        sess["csrf"] = CSRF
    return client


@pytest.fixture
def auth_headers(admin) -> dict:
    """Bearer token headers for the JSON admin API."""
    return {"Authorization": f"Bearer {generate_admin_token(admin['id'])}"}
