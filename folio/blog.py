#!/usr/bin/env python3
"""
A single-file portfolio: blog, projects, admin, tools, analytics and chat.
"""

import io
import json
import math
import os
import random
import re
import secrets
import sqlite3
import threading
import unicodedata
import uuid
import zipfile
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from functools import wraps
from html import unescape
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from typing import Iterable, Mapping, NamedTuple
from urllib.parse import urlparse
from xml.sax.saxutils import escape as xml_escape

import boto3
import click
import markdown
import requests
from botocore.exceptions import BotoCoreError, ClientError
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    make_response,
    redirect,
    render_template_string,
    request,
    send_file,
    session,
    url_for,
)
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from markupsafe import Markup
from PIL import Image, UnidentifiedImageError
from werkzeug.exceptions import HTTPException, Unauthorized
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("FOLIO_DB", str(ROOT / "folio.sqlite3")))

ENV_FILE = ROOT / ".env"
SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = os.environ.get("FOLIO_SECRET_KEY") or (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
if not SECRET_FILE.exists():
    SECRET_FILE.write_text(SECRET_KEY)

POST_STATUSES = ("DRAFT", "PUBLISHED")
TAG_KINDS = ("topic", "technology", "hashtag")
TAG_KIND_PLURALS = {"topics": "topic", "technologies": "technology", "hashtags": "hashtag"}
POST_TAG_KINDS = TAG_KINDS
PROJECT_TAG_KINDS = ("technology", "hashtag")

# link hit > shared topic > shared technology > shared hashtag
RELATED_WEIGHTS = {"link": 4, "topic": 3, "technology": 2, "hashtag": 1}
RELATED_DEFAULT_LIMIT = 5
RELATED_MAX_LIMIT = 20

ADMIN_TOKEN_MAX_AGE = int(os.environ.get("ADMIN_TOKEN_MAX_AGE", str(24 * 3600)))
ADMIN_TOKEN_COOKIE = "admin-token"
LOGIN_MAX_REQUESTS = int(os.environ.get("LOGIN_MAX_REQUESTS", "5"))
LOGIN_WINDOW_SEC = int(os.environ.get("LOGIN_WINDOW_SEC", "60"))
RATE_LIMIT_FALLBACK_POLICY = os.environ.get("RATE_LIMIT_FALLBACK_POLICY", "permissive")

WORDS_PER_MINUTE = 200
EXCERPT_LEN = 160
PAGE_DEFAULT = 10
API_LIST_MAX = 100

ANALYTICS_SESSION_TIMEOUT = timedelta(minutes=30)
ANALYTICS_MAX_DAYS = 90

CHAT_MESSAGE_MAX_LEN = 2000
CHAT_HISTORY_LIMIT = 50
CHAT_TIMEOUT_SEC = 30
GEMINI_DEFAULT_MODEL = "gemini-2.0-flash"
GEMINI_ENDPOINT = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)

COUNTER_STEP_MAX = 1000
LUCKY_SPAN_MAX = 1_000_000
WHEEL_MAX_NAMES = 200
FAVICON_PNG_SIZES = (16, 32, 48, 180, 192, 512)
FAVICON_ICO_SIZES = ((16, 16), (32, 32), (48, 48))
FAVICON_MAX_BYTES = 5 * 1024 * 1024

R2_ENV_KEYS = (
    "R2_ACCOUNT_ID",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_BUCKET",
    "R2_PUBLIC_BASE",
    "R2_ENDPOINT",
)
R2_REQUIRED_KEYS = (
    "R2_ACCOUNT_ID",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_BUCKET",
)
UPLOAD_MAX_BYTES = 8 * 1024 * 1024
IMAGE_MIMES = {
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "image/svg+xml",
}

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
# one pattern covers bare paths, href="…" attributes and ](…) markdown
# targets because all three share the /blog/ anchor
BLOG_LINK_RE = re.compile(r"""(?:href=["']|\]\()?/blog/([a-z0-9-]+)""", re.IGNORECASE)
_TAG_STRIP_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

try:
    __version__ = version("folio")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=os.environ.get("SESSION_COOKIE_SECURE", "1") != "0",
    ADMIN_TOKEN_MAX_AGE=ADMIN_TOKEN_MAX_AGE,
    ADMIN_API_TOKEN=os.environ.get("ADMIN_API_TOKEN", ""),
    RATE_LIMIT_ENABLED=os.environ.get("RATE_LIMIT_ENABLED", "1") != "0",
    RATE_LIMIT_FALLBACK_POLICY=RATE_LIMIT_FALLBACK_POLICY,
    RELATED_WEIGHTS=dict(RELATED_WEIGHTS),
)
app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

MD_EXTENSION_CONFIGS = {
    "pymdownx.highlight": {
        "guess_lang": True,
        "noclasses": True,
        "pygments_style": "nord",
    },
}
MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.mark",
    "pymdownx.superfences",
    "pymdownx.highlight",
    "pymdownx.betterem",
    "pymdownx.saneheaders",
]

md = markdown.Markdown(extensions=MD_EXTENSIONS, extension_configs=MD_EXTENSION_CONFIGS)


def render_markdown(text: str | None) -> str:
    if not text:
        return ""
    md.reset()
    return md.convert(text)


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return Markup(render_markdown(text))


@app.template_filter("date")
def date_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    return dt.strftime("%Y.%m.%d")


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Admin account (single row by policy)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS admin_user (
            id            TEXT PRIMARY KEY,
            username      TEXT UNIQUE NOT NULL,
            email         TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            role          TEXT NOT NULL DEFAULT 'admin',
            created_at    TEXT NOT NULL,
            last_login    TEXT
        );

        ------------------------------------------------------------
        -- 2.  Site-wide key/value settings
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );
        INSERT OR IGNORE INTO settings (key, value)
            VALUES ('site_name', 'folio'),
                   ('site_tagline', ''),
                   ('site_url', 'http://localhost:5000'),
                   ('author_name', ''),
                   ('author_bio', ''),
                   ('page_size', '10');

        ------------------------------------------------------------
        -- 3.  Posts, grouped into optional series
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS blog_series (
            id          TEXT PRIMARY KEY,
            title       TEXT NOT NULL,
            slug        TEXT UNIQUE NOT NULL,
            description TEXT,
            status      TEXT NOT NULL DEFAULT 'DRAFT'
                            CHECK (status IN ('DRAFT', 'PUBLISHED')),
            cover_image TEXT,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS post (
            id           TEXT PRIMARY KEY,
            title        TEXT NOT NULL,
            slug         TEXT UNIQUE NOT NULL,
            status       TEXT NOT NULL DEFAULT 'DRAFT'
                             CHECK (status IN ('DRAFT', 'PUBLISHED')),
            publish_date TEXT,
            body         TEXT NOT NULL,
            excerpt      TEXT,
            read_time    INTEGER,
            cover_image  TEXT,
            series_id    TEXT REFERENCES blog_series(id) ON DELETE SET NULL,
            series_order INTEGER,
            created_at   TEXT NOT NULL,
            updated_at   TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_post_status_date ON post(status, publish_date);

        ------------------------------------------------------------
        -- 4.  Projects
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS project (
            id          TEXT PRIMARY KEY,
            title       TEXT NOT NULL,
            slug        TEXT UNIQUE NOT NULL,
            status      TEXT NOT NULL DEFAULT 'DRAFT'
                            CHECK (status IN ('DRAFT', 'PUBLISHED')),
            description TEXT NOT NULL,
            images      TEXT NOT NULL DEFAULT '[]',   -- JSON list of URLs
            github_url  TEXT,
            live_url    TEXT,
            start_date  TEXT,
            end_date    TEXT,
            is_ongoing  INTEGER NOT NULL DEFAULT 0,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 5.  Tags: topics, technologies, hashtags
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS tag (
            id          TEXT PRIMARY KEY,
            kind        TEXT NOT NULL
                            CHECK (kind IN ('topic', 'technology', 'hashtag')),
            name        TEXT NOT NULL,
            slug        TEXT NOT NULL,
            description TEXT,
            created_at  TEXT NOT NULL,
            UNIQUE (kind, slug)
        );

        CREATE TABLE IF NOT EXISTS post_tag (
            post_id TEXT NOT NULL,
            tag_id  TEXT NOT NULL,
            PRIMARY KEY (post_id, tag_id),
            FOREIGN KEY (post_id) REFERENCES post(id) ON DELETE CASCADE,
            FOREIGN KEY (tag_id)  REFERENCES tag(id)  ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS project_tag (
            project_id TEXT NOT NULL,
            tag_id     TEXT NOT NULL,
            PRIMARY KEY (project_id, tag_id),
            FOREIGN KEY (project_id) REFERENCES project(id) ON DELETE CASCADE,
            FOREIGN KEY (tag_id)     REFERENCES tag(id)     ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_post_tag_tag ON post_tag(tag_id);

        ------------------------------------------------------------
        -- 6.  Utility counters
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS counter (
            name       TEXT PRIMARY KEY,
            value      INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 7.  Visitor analytics
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS visitor_session (
            id             TEXT PRIMARY KEY,
            visitor_id     TEXT NOT NULL,
            user_agent     TEXT,
            referrer       TEXT,
            device         TEXT,
            started_at     TEXT NOT NULL,
            last_seen_at   TEXT NOT NULL,
            ended_at       TEXT,
            total_duration INTEGER
        );

        CREATE TABLE IF NOT EXISTS page_visit (
            id           TEXT PRIMARY KEY,
            session_id   TEXT NOT NULL,
            path         TEXT NOT NULL,
            title        TEXT,
            entered_at   TEXT NOT NULL,
            exited_at    TEXT,
            duration     INTEGER,
            scroll_depth INTEGER,
            FOREIGN KEY (session_id) REFERENCES visitor_session(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_visitor_session_visitor
            ON visitor_session(visitor_id, last_seen_at);
        CREATE INDEX IF NOT EXISTS idx_page_visit_entered ON page_visit(entered_at);

        ------------------------------------------------------------
        -- 8.  Chat
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS chat_session (
            id         TEXT PRIMARY KEY,
            visitor_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS chat_message (
            id         INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            role       TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
            content    TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (session_id) REFERENCES chat_session(id) ON DELETE CASCADE
        );
        """
    )
    ensure_post_series_columns(db)
    db.commit()


def ensure_post_series_columns(db) -> None:
    """Add post.series_id / post.series_order if missing (older DBs)."""
    cols = {row["name"] for row in db.execute("PRAGMA table_info(post)")}
    if "series_id" not in cols:
        db.execute(
            "ALTER TABLE post ADD COLUMN series_id TEXT "
            "REFERENCES blog_series(id) ON DELETE SET NULL"
        )
    if "series_order" not in cols:
        db.execute("ALTER TABLE post ADD COLUMN series_order INTEGER")
    db.execute("CREATE INDEX IF NOT EXISTS idx_post_series ON post(series_id, series_order)")


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string (a trailing ``Z`` is accepted); naive → UTC."""
    if not value:
        return None
    value = value.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


###############################################################################
# Errors
###############################################################################
class ApiError(Exception):
    """An error that maps straight onto a JSON response."""

    status = 400

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ValidationError(ApiError):
    """Rejected input; *fields* maps field names to problems."""

    def __init__(self, message: str = "Invalid request", fields: dict | None = None):
        super().__init__(message, 400)
        self.fields = fields or {}


class ChatServiceError(ApiError):
    status = 502


class SingleAdminViolation(Exception):
    def __init__(self, message: str = "Only one admin account is allowed"):
        super().__init__(message)


class RateLimitStoreError(Exception):
    """Raised by a rate-limit backend that cannot answer right now."""


def wants_json() -> bool:
    return request.path.startswith("/api/")


@app.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    app.logger.warning("Validation failed on %s: %s", request.path, exc.fields or exc.message)
    return {"error": exc.message, "details": exc.fields}, 400


@app.errorhandler(ApiError)
def handle_api_error(exc: ApiError):
    return {"error": exc.message}, exc.status


@app.errorhandler(HTTPException)
def handle_http_error(exc: HTTPException):
    if wants_json():
        return {"error": exc.description}, exc.code
    return exc.get_response()


###############################################################################
# Settings + environment
###############################################################################
def get_setting(key, default=None):
    row = get_db().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    return row["value"] if row else default


def set_setting(key, value):
    db = get_db()
    db.execute(
        "INSERT INTO settings (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


SETTING_KEYS = ("site_name", "site_tagline", "site_url", "author_name", "author_bio", "page_size")


def site_name() -> str:
    return get_setting("site_name", "folio") or "folio"


def site_url() -> str:
    return (get_setting("site_url", "") or request.host_url).rstrip("/")


def page_size() -> int:
    try:
        return max(1, int(get_setting("page_size", PAGE_DEFAULT)))
    except (TypeError, ValueError):
        return PAGE_DEFAULT


def _read_env_file() -> dict[str, str]:
    env = {}
    if not ENV_FILE.exists():
        return env
    for ln in ENV_FILE.read_text().splitlines():
        ln = ln.strip()
        if not ln or ln.startswith("#") or "=" not in ln:
            continue
        k, v = ln.split("=", 1)
        env[k.strip()] = v.strip()
    return env


def env_config(keys: Iterable[str]) -> dict[str, str]:
    """Process env wins over the .env file; empty values are dropped."""
    env_file = _read_env_file()
    cfg = {k: (os.environ.get(k) or env_file.get(k) or "").strip() for k in keys}
    return {k: v for k, v in cfg.items() if v}


###############################################################################
# Content helpers
###############################################################################
def generate_slug(text: str | None, *, allow_empty: bool = False) -> str:
    """
    URL-safe slug: transliterate to ASCII, lower-case, collapse everything
    that is not a letter or digit into single hyphens.
    """
    fallback = "" if allow_empty else "untitled"
    if not text or not isinstance(text, str):
        return fallback
    ascii_text = (
        unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")
    return slug or fallback


def is_valid_slug(slug: str | None) -> bool:
    return bool(slug and SLUG_RE.match(slug))


def unique_slug(base: str, table: str, *, db, exclude_id: str | None = None,
                kind: str | None = None) -> str:
    """Append -2, -3, … until *base* is free in *table* (within *kind* for tags)."""
    sql, extra = f"SELECT id FROM {table} WHERE slug=?", ()
    if kind is not None:
        sql, extra = sql + " AND kind=?", (kind,)
    slug, n = base, 1
    while True:
        row = db.execute(sql, (slug, *extra)).fetchone()
        if row is None or row["id"] == exclude_id:
            return slug
        n += 1
        slug = f"{base}-{n}"


def plain_text(body: str | None) -> str:
    """Markdown → rendered HTML → text with collapsed whitespace."""
    html = render_markdown(body)
    return _WS_RE.sub(" ", unescape(_TAG_STRIP_RE.sub(" ", html))).strip()


def read_time(body: str | None) -> int:
    words = len(plain_text(body).split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def make_excerpt(body: str | None, length: int = EXCERPT_LEN) -> str:
    text = plain_text(body)
    if len(text) <= length:
        return text
    cut = text[: length - 1].rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "…"


def paginate(base_sql: str, params: tuple, *, page: int, per_page: int, db):
    total = db.execute(f"SELECT COUNT(*) FROM ({base_sql})", params).fetchone()[0]
    pages = (total + per_page - 1) // per_page
    rows = db.execute(
        f"{base_sql} LIMIT ? OFFSET ?", params + (per_page, (page - 1) * per_page)
    ).fetchall()
    return rows, pages


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


###############################################################################
# Tags
###############################################################################
def normalize_kind(kind: str) -> str:
    """Accept singular or plural kind names (``topics`` → ``topic``)."""
    kind = (kind or "").strip().lower()
    kind = TAG_KIND_PLURALS.get(kind, kind)
    if kind not in TAG_KINDS:
        abort(404)
    return kind


def get_or_create_tag(kind: str, name: str, *, db) -> str:
    """Return the id of the *kind* tag called *name*, creating it on demand.

    Tags match by name, ignoring case. The slug only names the tag in URLs, so
    ``C++`` and ``C#`` stay distinct tags with slugs ``c`` and ``c-2``.
    """
    name = name.strip()
    row = db.execute(
        "SELECT id FROM tag WHERE kind=? AND name=? COLLATE NOCASE", (kind, name)
    ).fetchone()
    if row:
        return row["id"]
    slug = unique_slug(generate_slug(name), "tag", db=db, kind=kind)
    tag_id = new_id()
    db.execute(
        "INSERT INTO tag (id, kind, name, slug, created_at) VALUES (?,?,?,?,?)",
        (tag_id, kind, name, slug, now_iso()),
    )
    return tag_id


def _sync_tags(link_table: str, owner_col: str, owner_id: str, kind: str,
               names: Iterable[str], *, db) -> None:
    wanted = {get_or_create_tag(kind, n, db=db) for n in names if n and n.strip()}
    cur = {
        r["tag_id"]
        for r in db.execute(
            f"SELECT lt.tag_id FROM {link_table} lt JOIN tag t ON t.id = lt.tag_id "
            f"WHERE lt.{owner_col}=? AND t.kind=?",
            (owner_id, kind),
        )
    }
    for tag_id in wanted - cur:
        db.execute(
            f"INSERT OR IGNORE INTO {link_table} ({owner_col}, tag_id) VALUES (?,?)",
            (owner_id, tag_id),
        )
    for tag_id in cur - wanted:
        db.execute(
            f"DELETE FROM {link_table} WHERE {owner_col}=? AND tag_id=?",
            (owner_id, tag_id),
        )


def sync_post_tags(post_id: str, kind: str, names: Iterable[str], *, db) -> None:
    """Bring the *kind* tags of one post in line with *names*."""
    _sync_tags("post_tag", "post_id", post_id, kind, names, db=db)


def sync_project_tags(project_id: str, kind: str, names: Iterable[str], *, db) -> None:
    _sync_tags("project_tag", "project_id", project_id, kind, names, db=db)


def _tags_by_owner(link_table: str, owner_col: str, owner_ids: list[str], *, db) -> dict:
    out: dict[str, dict[str, list[dict]]] = {}
    if not owner_ids:
        return out
    q_marks = ",".join("?" * len(owner_ids))
    rows = db.execute(
        f"""SELECT lt.{owner_col} AS owner, t.id, t.kind, t.name, t.slug
              FROM {link_table} lt
              JOIN tag t ON t.id = lt.tag_id
             WHERE lt.{owner_col} IN ({q_marks})
          ORDER BY LOWER(t.name)""",
        tuple(owner_ids),
    ).fetchall()
    for r in rows:
        bucket = out.setdefault(r["owner"], {})
        bucket.setdefault(r["kind"], []).append(
            {"id": r["id"], "name": r["name"], "slug": r["slug"]}
        )
    return out


def post_tags(post_ids: list[str], *, db) -> dict:
    """{post_id: {kind: [tag dicts …]}} sorted by name."""
    return _tags_by_owner("post_tag", "post_id", post_ids, db=db)


def project_tags(project_ids: list[str], *, db) -> dict:
    return _tags_by_owner("project_tag", "project_id", project_ids, db=db)


def tag_usage(kind: str, *, db) -> list[dict]:
    """All tags of *kind* with post and project usage counts."""
    rows = db.execute(
        """SELECT t.id, t.name, t.slug, t.description, t.created_at,
                  (SELECT COUNT(*) FROM post_tag pt WHERE pt.tag_id = t.id)    AS posts,
                  (SELECT COUNT(*) FROM project_tag pj WHERE pj.tag_id = t.id) AS projects
             FROM tag t
            WHERE t.kind=?
         ORDER BY LOWER(t.name)""",
        (kind,),
    ).fetchall()
    return [dict(r) for r in rows]


###############################################################################
# Related posts (knowledge graph)
###############################################################################
class TagRef(NamedTuple):
    id: str
    kind: str


class PostSnapshot(NamedTuple):
    """Immutable view of one post for a scoring pass."""

    id: str
    slug: str
    title: str
    body: str
    tags: Mapping[str, frozenset]  # kind → tag ids


class ScoredCandidate(NamedTuple):
    post: PostSnapshot
    score: int
    shared_tags: frozenset


def group_tags(refs: Iterable[TagRef]) -> dict[str, frozenset]:
    """Partition tag refs by kind; every kind is present, possibly empty."""
    buckets: dict[str, set[str]] = {k: set() for k in TAG_KINDS}
    for ref in refs:
        buckets.setdefault(ref.kind, set()).add(ref.id)
    return {k: frozenset(v) for k, v in buckets.items()}


def extract_blog_links(body: str | None) -> set[str]:
    """
    Return the lower-cased slugs of every in-site ``/blog/<slug>`` reference
    in *body* (bare path, ``href`` attribute or Markdown link target).
    """
    if not body:
        return set()
    return {m.lower() for m in BLOG_LINK_RE.findall(body)}


def score_candidate(
    source: PostSnapshot,
    candidate: PostSnapshot,
    linked_slugs: set[str],
    *,
    weights: Mapping[str, int] | None = None,
) -> ScoredCandidate:
    """
    Weighted overlap between *source* and *candidate*:
    4 × linked + 3 × shared topics + 2 × shared technologies + 1 × shared hashtags.
    Links add score only; shared_tags holds the intersected tag ids.
    """
    w = {**RELATED_WEIGHTS, **(weights or {})}
    score = w["link"] if candidate.slug.lower() in linked_slugs else 0
    shared: set[str] = set()
    for kind in TAG_KINDS:
        common = source.tags.get(kind, frozenset()) & candidate.tags.get(kind, frozenset())
        score += w[kind] * len(common)
        shared |= common
    return ScoredCandidate(candidate, score, frozenset(shared))


def rank_candidates(scored: Iterable[ScoredCandidate], limit: int) -> list[ScoredCandidate]:
    """Drop zero scores, order by score (ties keep input order), keep *limit*."""
    if limit <= 0:
        return []
    ranked = [c for c in scored if c.score > 0]
    ranked.sort(key=lambda c: -c.score)  # list.sort is stable
    return ranked[:limit]


def related_posts(
    source: PostSnapshot,
    candidates: Iterable[PostSnapshot],
    limit: int = RELATED_DEFAULT_LIMIT,
    *,
    weights: Mapping[str, int] | None = None,
) -> list[ScoredCandidate]:
    linked = extract_blog_links(source.body)
    scored = [
        score_candidate(source, c, linked, weights=weights)
        for c in candidates
        if c.id != source.id
    ]
    return rank_candidates(scored, limit)


def load_post_snapshots(*, db, include_id: str | None = None) -> list[PostSnapshot]:
    """
    Published posts (plus *include_id* whatever its status) with their tags,
    newest first. A single SELECT so the pool is one consistent read.
    """
    rows = db.execute(
        """SELECT p.id, p.slug, p.title, p.body, t.id AS tag_id, t.kind
             FROM post p
        LEFT JOIN post_tag pt ON pt.post_id = p.id
        LEFT JOIN tag t       ON t.id = pt.tag_id
            WHERE p.status = 'PUBLISHED' OR p.id = ?
         ORDER BY COALESCE(p.publish_date, p.created_at) DESC, p.id""",
        (include_id,),
    ).fetchall()

    order: list[str] = []
    base: dict[str, sqlite3.Row] = {}
    refs: defaultdict[str, list[TagRef]] = defaultdict(list)
    for r in rows:
        if r["id"] not in base:
            base[r["id"]] = r
            order.append(r["id"])
        if r["tag_id"]:
            refs[r["id"]].append(TagRef(r["tag_id"], r["kind"]))

    return [
        PostSnapshot(
            id=pid,
            slug=base[pid]["slug"],
            title=base[pid]["title"],
            body=base[pid]["body"] or "",
            tags=group_tags(refs[pid]),
        )
        for pid in order
    ]


def find_related_posts(
    post_id: str, limit: int = RELATED_DEFAULT_LIMIT, *, db
) -> list[ScoredCandidate] | None:
    """Related published posts for *post_id*; ``None`` if the post is unknown."""
    pool = load_post_snapshots(db=db, include_id=post_id)
    source = next((p for p in pool if p.id == post_id), None)
    if source is None:
        return None
    candidates = [p for p in pool if p.id != post_id]
    return related_posts(
        source, candidates, limit, weights=app.config.get("RELATED_WEIGHTS")
    )


def shared_tag_names(tag_ids: Iterable[str], *, db) -> list[str]:
    """Tag names for *tag_ids*, heaviest kind first, then alphabetical."""
    ids = list(tag_ids)
    if not ids:
        return []
    weights = {**RELATED_WEIGHTS, **(app.config.get("RELATED_WEIGHTS") or {})}
    q_marks = ",".join("?" * len(ids))
    rows = db.execute(
        f"SELECT name, kind FROM tag WHERE id IN ({q_marks})", tuple(ids)
    ).fetchall()
    rows = sorted(rows, key=lambda r: (-weights.get(r["kind"], 0), r["name"].lower()))
    return [r["name"] for r in rows]


def related_payload(ranked: list[ScoredCandidate], *, db) -> list[dict]:
    """Shape ranked candidates as ``{blog, score, sharedTags}`` dicts."""
    if not ranked:
        return []
    ids = [c.post.id for c in ranked]
    q_marks = ",".join("?" * len(ids))
    meta = {
        r["id"]: r
        for r in db.execute(
            f"SELECT id, excerpt, publish_date, cover_image, read_time FROM post "
            f"WHERE id IN ({q_marks})",
            tuple(ids),
        )
    }
    out = []
    for c in ranked:
        m = meta.get(c.post.id)
        out.append(
            {
                "blog": {
                    "id": c.post.id,
                    "slug": c.post.slug,
                    "title": c.post.title,
                    "excerpt": m["excerpt"] if m else None,
                    "publishDate": m["publish_date"] if m else None,
                    "coverImage": m["cover_image"] if m else None,
                    "readTime": m["read_time"] if m else None,
                },
                "score": c.score,
                "sharedTags": shared_tag_names(c.shared_tags, db=db),
            }
        )
    return out


###############################################################################
# Rate limiting
###############################################################################
class RateLimitResult(NamedTuple):
    success: bool
    remaining: int
    reset_time: float


class MemoryRateLimitStore:
    """
    Fixed-window counters kept in process memory: identifier → [count, reset_time].

    Any object with the same ``hit`` signature can replace it (e.g. one backed
    by a shared cache); install it as ``app.extensions["rate_limit_store"]``.
    """

    def __init__(self, sweep_interval: float = 60.0):
        self.sweep_interval = sweep_interval
        self._windows: dict[str, list] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._windows)

    def hit(self, key: str, *, max_requests: int, window: float, now: float) -> RateLimitResult:
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)
            slot = self._windows.get(key)
            if slot is None or now >= slot[1]:
                slot = [0, now + window]
                self._windows[key] = slot
            if slot[0] >= max_requests:
                return RateLimitResult(False, 0, slot[1])
            slot[0] += 1
            return RateLimitResult(True, max_requests - slot[0], slot[1])

    def sweep(self, now: float) -> int:
        """Purge expired windows; return how many were dropped."""
        with self._lock:
            return self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [k for k, (_, reset) in self._windows.items() if now >= reset]
        for k in expired:
            del self._windows[k]
        self._last_sweep = now
        return len(expired)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)


app.extensions["rate_limit_store"] = MemoryRateLimitStore()


def rate_limit_store():
    return app.extensions["rate_limit_store"]


def client_ip() -> str:
    """Return best-effort client IP after ProxyFix."""
    return (
        request.access_route[0] if request.access_route else request.remote_addr
    ) or "unknown"


def check_rate_limit(
    identifier: str,
    *,
    max_requests: int,
    window: float,
    store=None,
    now: float | None = None,
) -> RateLimitResult:
    """
    Count one request for *identifier*. When the store fails the configured
    fallback policy decides: ``permissive`` lets it through, ``conservative``
    blocks it.
    """
    store = store or rate_limit_store()
    now = time() if now is None else now
    try:
        return store.hit(identifier, max_requests=max_requests, window=window, now=now)
    except RateLimitStoreError:
        policy = app.config.get("RATE_LIMIT_FALLBACK_POLICY", "permissive")
        app.logger.warning(
            "Rate-limit store unavailable, applying %s policy for %s", policy, identifier
        )
        if policy == "conservative":
            return RateLimitResult(False, 0, now + window)
        return RateLimitResult(True, max_requests - 1, now + window)


def rate_limit(max_requests: int, window: int = 60, scope: str | None = None):
    def decorator(view):
        key_scope = scope or view.__name__

        @wraps(view)
        def wrapped(*args, **kwargs):
            if not app.config.get("RATE_LIMIT_ENABLED", True):
                return view(*args, **kwargs)

            now = time()
            res = check_rate_limit(
                f"{key_scope}:{client_ip()}",
                max_requests=max_requests,
                window=window,
                now=now,
            )
            if not res.success:
                headers = {
                    "Retry-After": str(max(1, math.ceil(res.reset_time - now))),
                    "X-RateLimit-Remaining": "0",
                }
                app.logger.warning("Rate limit hit: %s from %s", key_scope, client_ip())
                if wants_json():
                    return {"error": "Too many requests"}, 429, headers
                return Response(
                    "Too many requests – try again later.", status=429, headers=headers
                )

            resp = make_response(view(*args, **kwargs))
            resp.headers["X-RateLimit-Remaining"] = str(res.remaining)
            return resp

        return wrapped

    return decorator


###############################################################################
# Authentication
###############################################################################
def _token_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="admin-access")


def generate_admin_token(admin_id: str) -> str:
    return _token_serializer().dumps({"adminId": admin_id, "type": "admin_access"})


def verify_admin_token(token: str, max_age: int | None = None) -> dict:
    """
    Return the token payload or raise ``Unauthorized``.
    Expired and forged tokens are told apart in the message only.
    """
    max_age = max_age or app.config.get("ADMIN_TOKEN_MAX_AGE", ADMIN_TOKEN_MAX_AGE)
    try:
        data = _token_serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthorized("Token expired") from None
    except BadSignature:
        raise Unauthorized("Invalid token") from None
    if not isinstance(data, dict) or data.get("type") != "admin_access":
        raise Unauthorized("Invalid token type")
    return data


def _request_token() -> str:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return (
        request.headers.get("X-Admin-Token", "").strip()
        or request.cookies.get(ADMIN_TOKEN_COOKIE, "").strip()
    )


def token_authenticated() -> bool:
    token = _request_token()
    if not token:
        return False
    static = app.config.get("ADMIN_API_TOKEN") or ""
    if static and secrets.compare_digest(token, static):
        return True
    try:
        data = verify_admin_token(token)
    except Unauthorized:
        return False
    row = get_db().execute(
        "SELECT 1 FROM admin_user WHERE id=?", (data.get("adminId"),)
    ).fetchone()
    return row is not None


def is_admin() -> bool:
    return bool(session.get("logged_in")) or token_authenticated()


def login_required() -> None:
    if not is_admin():
        abort(401 if wants_json() else 403)


def create_admin(db, *, username: str, email: str, password: str) -> dict:
    """Create the one and only admin account."""
    if db.execute("SELECT 1 FROM admin_user LIMIT 1").fetchone():
        raise SingleAdminViolation()
    if not username or not email or not password:
        raise ValueError("username, email and password are required")
    admin_id = new_id()
    db.execute(
        "INSERT INTO admin_user (id, username, email, password_hash, created_at) "
        "VALUES (?,?,?,?,?)",
        (admin_id, username, email, generate_password_hash(password), now_iso()),
    )
    db.commit()
    return {"id": admin_id, "username": username, "email": email}


def set_admin_password(db, password: str) -> bool:
    cur = db.execute(
        "UPDATE admin_user SET password_hash=?", (generate_password_hash(password),)
    )
    db.commit()
    return cur.rowcount > 0


def authenticate(identifier: str, password: str, *, db):
    """Look the admin up by username *or* e-mail and check the password."""
    row = db.execute(
        "SELECT * FROM admin_user WHERE username=? OR email=? LIMIT 1",
        (identifier, identifier),
    ).fetchone()
    if row is None or not check_password_hash(row["password_hash"], password):
        return None
    db.execute("UPDATE admin_user SET last_login=? WHERE id=?", (now_iso(), row["id"]))
    db.commit()
    return row


def current_username() -> str:
    row = get_db().execute("SELECT username FROM admin_user LIMIT 1").fetchone()
    return row["username"] if row else "admin"


def _csrf_token() -> str:
    """One token per session (rotates when the cookie does)."""
    return session.get("csrf", "")


SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    if request.method in SAFE_METHODS:
        return

    # no session login ⇒ nothing to forge (covers login + token-auth calls)
    if not session.get("logged_in"):
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": "interest-cohort=()",
        }
    )
    return resp


app.jinja_env.globals.update(
    csrf_token=_csrf_token,
    is_admin=is_admin,
    site_name=site_name,
    get_setting=get_setting,
    version=__version__,
)


###############################################################################
# CLI – create admin, rotate password, demo content
###############################################################################
@app.cli.command("init")
@click.option("--username", prompt=True, help="Admin username")
@click.option("--email", prompt=True, help="Admin e-mail")
@click.password_option(help="Admin password")
def cli_init(username: str, email: str, password: str):
    """Initialise DB *and* create the admin account."""
    init_db()
    try:
        create_admin(get_db(), username=username.strip(), email=email.strip(), password=password)
    except SingleAdminViolation as exc:
        raise click.ClickException(str(exc)) from None

    click.secho("\n✅  Admin created.", fg="green")
    click.echo("Sign in at /admin/login.")


@app.cli.command("passwd")
@click.password_option(help="New admin password")
def cli_passwd(password: str):
    """Replace the admin's password."""
    if not set_admin_password(get_db(), password):
        raise click.ClickException("No admin account yet – run `init` first.")
    click.secho("\n🔑  Password updated.", fg="yellow")


@app.cli.command("seed")
def cli_seed():
    """Insert a handful of demo posts and projects."""
    init_db()
    db = get_db()
    n = seed_demo_content(db=db)
    click.echo(f"Seeded {n} records.")


###############################################################################
# Validation + CRUD
###############################################################################
def _clean_str(data: dict, key: str, errors: dict, *, required: bool = False,
               max_len: int | None = None) -> str | None:
    val = data.get(key)
    if val is None or (isinstance(val, str) and not val.strip()):
        if required:
            errors[key] = "is required"
        return None
    if not isinstance(val, str):
        errors[key] = "must be a string"
        return None
    val = val.strip()
    if max_len and len(val) > max_len:
        errors[key] = f"must be at most {max_len} characters"
        return None
    return val


def _clean_names(data: dict, key: str, errors: dict) -> list[str] | None:
    val = data.get(key)
    if val is None:
        return None
    if isinstance(val, str):
        val = [v for v in val.split(",")]
    if not isinstance(val, list) or not all(isinstance(v, str) for v in val):
        errors[key] = "must be a list of names"
        return None
    seen: dict[str, str] = {}
    for name in (v.strip() for v in val):
        if name:
            seen.setdefault(name.casefold(), name)
    return list(seen.values())


def _clean_date(data: dict, key: str, errors: dict) -> str | None:
    val = data.get(key)
    if not val:
        return None
    try:
        return parse_iso(str(val)).isoformat(timespec="seconds")
    except ValueError:
        errors[key] = "must be an ISO-8601 date"
        return None


def _clean_url(data: dict, key: str, errors: dict) -> str | None:
    val = _clean_str(data, key, errors, max_len=2000)
    if val is None:
        return None
    if urlparse(val).scheme not in {"http", "https"} or not urlparse(val).netloc:
        errors[key] = "must be an http(s) URL"
        return None
    return val


def _clean_status(data: dict, errors: dict) -> str | None:
    val = data.get("status")
    if val is None:
        return None
    val = str(val).upper()
    if val not in POST_STATUSES:
        errors["status"] = f"must be one of {', '.join(POST_STATUSES)}"
        return None
    return val


def _clean_position(data: dict, key: str, errors: dict) -> int | None:
    val = data.get(key)
    if val is None:
        return None
    if isinstance(val, bool) or not isinstance(val, int) or not 1 <= val <= 10_000:
        errors[key] = "must be an integer between 1 and 10000"
        return None
    return val


def _clean_slug(data: dict, errors: dict) -> str | None:
    val = _clean_str(data, "slug", errors, max_len=200)
    if val is not None and not is_valid_slug(val):
        errors["slug"] = "may only contain lowercase letters, digits and hyphens"
        return None
    return val


_TAG_FIELDS = {"topic": "topics", "technology": "technologies", "hashtag": "hashtags"}
# internal name → payload key for optional fields a client may blank out
_POST_CLEARABLE = {
    "excerpt": "excerpt",
    "publish_date": "publishDate",
    "cover_image": "coverImage",
    "series_id": "seriesId",
    "series_order": "seriesOrder",
}
_SERIES_CLEARABLE = {"description": "description", "cover_image": "coverImage"}
_PROJECT_CLEARABLE = {
    "github_url": "githubUrl",
    "live_url": "liveUrl",
    "start_date": "startDate",
    "end_date": "endDate",
}


def _sent_fields(out: dict, data: dict, clearable: dict) -> dict:
    """Keep cleaned values, plus explicit blanks for clearable fields."""
    return {
        k: v
        for k, v in out.items()
        if v is not None or (k in clearable and clearable[k] in data)
    }


def validate_post_payload(data, *, partial: bool = False) -> dict:
    """
    Check a camelCase post payload and return only the fields that were
    sent, cleaned. Raises ``ValidationError`` listing every bad field.
    """
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    errors: dict[str, str] = {}
    out: dict = {
        "title": _clean_str(data, "title", errors, required=not partial, max_len=200),
        "slug": _clean_slug(data, errors),
        "body": _clean_str(data, "content", errors, required=not partial),
        "excerpt": _clean_str(data, "excerpt", errors, max_len=500),
        "status": _clean_status(data, errors),
        "publish_date": _clean_date(data, "publishDate", errors),
        "cover_image": _clean_str(data, "coverImage", errors, max_len=2000),
        "series_id": _clean_str(data, "seriesId", errors, max_len=100),
        "series_order": _clean_position(data, "seriesOrder", errors),
    }
    for kind in POST_TAG_KINDS:
        out[kind] = _clean_names(data, _TAG_FIELDS[kind], errors)
    if errors:
        raise ValidationError("Invalid post", errors)
    return _sent_fields(out, data, _POST_CLEARABLE)


def validate_project_payload(data, *, partial: bool = False) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    errors: dict[str, str] = {}
    out: dict = {
        "title": _clean_str(data, "title", errors, required=not partial, max_len=200),
        "slug": _clean_slug(data, errors),
        "description": _clean_str(data, "description", errors, required=not partial),
        "status": _clean_status(data, errors),
        "github_url": _clean_url(data, "githubUrl", errors),
        "live_url": _clean_url(data, "liveUrl", errors),
        "start_date": _clean_date(data, "startDate", errors),
        "end_date": _clean_date(data, "endDate", errors),
    }
    images = data.get("images")
    if images is not None:
        if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
            errors["images"] = "must be a list of URLs"
        else:
            out["images"] = [i.strip() for i in images if i.strip()]
    if "isOngoing" in data:
        out["is_ongoing"] = bool(data.get("isOngoing"))
    if out["start_date"] and out["end_date"] and out["end_date"] < out["start_date"]:
        errors["endDate"] = "must not be before startDate"
    for kind in PROJECT_TAG_KINDS:
        out[kind] = _clean_names(data, _TAG_FIELDS[kind], errors)
    if errors:
        raise ValidationError("Invalid project", errors)
    return _sent_fields(out, data, _PROJECT_CLEARABLE)


def validate_tag_payload(data, *, partial: bool = False) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    errors: dict[str, str] = {}
    out = {
        "name": _clean_str(data, "name", errors, required=not partial, max_len=80),
        "slug": _clean_slug(data, errors),
        "description": _clean_str(data, "description", errors, max_len=500),
    }
    if errors:
        raise ValidationError("Invalid tag", errors)
    return {k: v for k, v in out.items() if v is not None}


def validate_series_payload(data, *, partial: bool = False) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    errors: dict[str, str] = {}
    out = {
        "title": _clean_str(data, "title", errors, required=not partial, max_len=200),
        "slug": _clean_slug(data, errors),
        "description": _clean_str(data, "description", errors, max_len=2000),
        "status": _clean_status(data, errors),
        "cover_image": _clean_str(data, "coverImage", errors, max_len=2000),
    }
    if errors:
        raise ValidationError("Invalid series", errors)
    return _sent_fields(out, data, _SERIES_CLEARABLE)


def next_series_order(series_id: str, *, db, exclude_id: str | None = None) -> int:
    row = db.execute(
        "SELECT COALESCE(MAX(series_order), 0) FROM post WHERE series_id=? AND id IS NOT ?",
        (series_id, exclude_id),
    ).fetchone()
    return row[0] + 1


def resolve_series(series_id: str | None, order: int | None, *, db,
                   post_id: str | None = None) -> tuple[str | None, int | None]:
    """Check that *series_id* exists; default the post to the end of the series."""
    if not series_id:
        return None, None
    if db.execute("SELECT 1 FROM blog_series WHERE id=?", (series_id,)).fetchone() is None:
        raise ValidationError("Invalid post", {"seriesId": "unknown series"})
    if order is None:
        order = next_series_order(series_id, db=db, exclude_id=post_id)
    return series_id, order


def create_post(fields: dict, *, db) -> str:
    post_id = new_id()
    now = now_iso()
    body = fields["body"]
    status = fields.get("status") or "DRAFT"
    publish_date = fields.get("publish_date")
    if status == "PUBLISHED" and not publish_date:
        publish_date = now
    series_id, series_order = resolve_series(
        fields.get("series_id"), fields.get("series_order"), db=db
    )
    slug = unique_slug(fields.get("slug") or generate_slug(fields["title"]), "post", db=db)
    db.execute(
        """INSERT INTO post (id, title, slug, status, publish_date, body, excerpt,
                             read_time, cover_image, series_id, series_order,
                             created_at, updated_at)
           VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)""",
        (
            post_id,
            fields["title"],
            slug,
            status,
            publish_date,
            body,
            fields.get("excerpt") or make_excerpt(body),
            read_time(body),
            fields.get("cover_image"),
            series_id,
            series_order,
            now,
            now,
        ),
    )
    for kind in POST_TAG_KINDS:
        if fields.get(kind) is not None:
            sync_post_tags(post_id, kind, fields[kind], db=db)
    db.commit()
    app.logger.info("Created post %s (%s)", slug, status)
    return post_id


def update_post(post_id: str, fields: dict, *, db) -> bool:
    row = db.execute("SELECT * FROM post WHERE id=?", (post_id,)).fetchone()
    if row is None:
        return False
    cur = dict(row)
    if "series_id" in fields or "series_order" in fields:
        series_id = fields["series_id"] if "series_id" in fields else cur["series_id"]
        if "series_order" in fields:
            order = fields["series_order"]
        else:
            order = cur["series_order"] if series_id == cur["series_id"] else None
        cur["series_id"], cur["series_order"] = resolve_series(
            series_id, order, db=db, post_id=post_id
        )
    if fields.get("title"):
        cur["title"] = fields["title"]
    if fields.get("slug"):
        cur["slug"] = unique_slug(fields["slug"], "post", db=db, exclude_id=post_id)
    if fields.get("body"):
        # only follow the body when the excerpt was never hand-written
        if "excerpt" not in fields and cur["excerpt"] == make_excerpt(cur["body"]):
            cur["excerpt"] = make_excerpt(fields["body"])
        cur["body"] = fields["body"]
        cur["read_time"] = read_time(fields["body"])
    if "excerpt" in fields:
        cur["excerpt"] = fields["excerpt"] or make_excerpt(cur["body"])
    if "cover_image" in fields:
        cur["cover_image"] = fields["cover_image"]
    if "publish_date" in fields:
        cur["publish_date"] = fields["publish_date"]
    if fields.get("status"):
        cur["status"] = fields["status"]
    if cur["status"] == "PUBLISHED" and not cur["publish_date"]:
        cur["publish_date"] = now_iso()

    db.execute(
        """UPDATE post
              SET title=?, slug=?, status=?, publish_date=?, body=?, excerpt=?,
                  read_time=?, cover_image=?, series_id=?, series_order=?, updated_at=?
            WHERE id=?""",
        (
            cur["title"],
            cur["slug"],
            cur["status"],
            cur["publish_date"],
            cur["body"],
            cur["excerpt"],
            cur["read_time"],
            cur["cover_image"],
            cur["series_id"],
            cur["series_order"],
            now_iso(),
            post_id,
        ),
    )
    for kind in POST_TAG_KINDS:
        if fields.get(kind) is not None:
            sync_post_tags(post_id, kind, fields[kind], db=db)
    db.commit()
    app.logger.info("Updated post %s", cur["slug"])
    return True


def delete_post(post_id: str, *, db) -> bool:
    cur = db.execute("DELETE FROM post WHERE id=?", (post_id,))
    db.commit()
    if cur.rowcount:
        app.logger.info("Deleted post %s", post_id)
    return cur.rowcount > 0


def create_project(fields: dict, *, db) -> str:
    project_id = new_id()
    now = now_iso()
    slug = unique_slug(
        fields.get("slug") or generate_slug(fields["title"]), "project", db=db
    )
    db.execute(
        """INSERT INTO project (id, title, slug, status, description, images,
                                github_url, live_url, start_date, end_date,
                                is_ongoing, created_at, updated_at)
           VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)""",
        (
            project_id,
            fields["title"],
            slug,
            fields.get("status") or "DRAFT",
            fields["description"],
            json.dumps(fields.get("images") or []),
            fields.get("github_url"),
            fields.get("live_url"),
            fields.get("start_date"),
            fields.get("end_date"),
            int(bool(fields.get("is_ongoing"))),
            now,
            now,
        ),
    )
    for kind in PROJECT_TAG_KINDS:
        if fields.get(kind) is not None:
            sync_project_tags(project_id, kind, fields[kind], db=db)
    db.commit()
    app.logger.info("Created project %s", slug)
    return project_id


_PROJECT_COLUMNS = (
    "title", "status", "description", "github_url", "live_url", "start_date", "end_date",
)


def update_project(project_id: str, fields: dict, *, db) -> bool:
    row = db.execute("SELECT * FROM project WHERE id=?", (project_id,)).fetchone()
    if row is None:
        return False
    cur = dict(row)
    for col in _PROJECT_COLUMNS:
        if col in fields:
            cur[col] = fields[col]
    if fields.get("slug"):
        cur["slug"] = unique_slug(fields["slug"], "project", db=db, exclude_id=project_id)
    if "images" in fields:
        cur["images"] = json.dumps(fields["images"])
    if "is_ongoing" in fields:
        cur["is_ongoing"] = int(fields["is_ongoing"])

    db.execute(
        """UPDATE project
              SET title=?, slug=?, status=?, description=?, images=?, github_url=?,
                  live_url=?, start_date=?, end_date=?, is_ongoing=?, updated_at=?
            WHERE id=?""",
        (
            cur["title"],
            cur["slug"],
            cur["status"],
            cur["description"],
            cur["images"],
            cur["github_url"],
            cur["live_url"],
            cur["start_date"],
            cur["end_date"],
            cur["is_ongoing"],
            now_iso(),
            project_id,
        ),
    )
    for kind in PROJECT_TAG_KINDS:
        if fields.get(kind) is not None:
            sync_project_tags(project_id, kind, fields[kind], db=db)
    db.commit()
    app.logger.info("Updated project %s", cur["slug"])
    return True


def delete_project(project_id: str, *, db) -> bool:
    cur = db.execute("DELETE FROM project WHERE id=?", (project_id,))
    db.commit()
    return cur.rowcount > 0


def series_slug_taken(slug: str, *, db, exclude_id: str | None = None) -> bool:
    row = db.execute(
        "SELECT id FROM blog_series WHERE slug=? AND id IS NOT ?", (slug, exclude_id)
    ).fetchone()
    return row is not None


def create_series(fields: dict, *, db) -> str:
    series_id = new_id()
    now = now_iso()
    slug = fields.get("slug") or unique_slug(
        generate_slug(fields["title"]), "blog_series", db=db
    )
    db.execute(
        """INSERT INTO blog_series (id, title, slug, description, status, cover_image,
                                    created_at, updated_at)
           VALUES (?,?,?,?,?,?,?,?)""",
        (
            series_id,
            fields["title"],
            slug,
            fields.get("description"),
            fields.get("status") or "DRAFT",
            fields.get("cover_image"),
            now,
            now,
        ),
    )
    db.commit()
    app.logger.info("Created series %s", slug)
    return series_id


def update_series(series_id: str, fields: dict, *, db) -> bool:
    row = db.execute("SELECT * FROM blog_series WHERE id=?", (series_id,)).fetchone()
    if row is None:
        return False
    cur = dict(row)
    for col in ("title", "slug", "description", "status", "cover_image"):
        if col in fields:
            cur[col] = fields[col]
    db.execute(
        """UPDATE blog_series
              SET title=?, slug=?, description=?, status=?, cover_image=?, updated_at=?
            WHERE id=?""",
        (
            cur["title"],
            cur["slug"],
            cur["description"],
            cur["status"],
            cur["cover_image"],
            now_iso(),
            series_id,
        ),
    )
    db.commit()
    app.logger.info("Updated series %s", cur["slug"])
    return True


def delete_series(series_id: str, *, db) -> bool:
    """Remove a series; its posts stay, detached from it."""
    db.execute("UPDATE post SET series_order=NULL WHERE series_id=?", (series_id,))
    cur = db.execute("DELETE FROM blog_series WHERE id=?", (series_id,))
    db.commit()
    if cur.rowcount:
        app.logger.info("Deleted series %s", series_id)
    return cur.rowcount > 0


def series_posts(series_id: str, *, db, published_only: bool = True) -> list:
    sql = "SELECT * FROM post WHERE series_id=?"
    if published_only:
        sql += " AND status='PUBLISHED'"
    sql += " ORDER BY series_order, COALESCE(publish_date, created_at)"
    return db.execute(sql, (series_id,)).fetchall()


def post_to_dict(row, tags: dict | None = None, *, with_body: bool = False) -> dict:
    tags = tags or {}
    out = {
        "id": row["id"],
        "title": row["title"],
        "slug": row["slug"],
        "status": row["status"],
        "publishDate": row["publish_date"],
        "excerpt": row["excerpt"],
        "readTime": row["read_time"],
        "coverImage": row["cover_image"],
        "seriesId": row["series_id"],
        "seriesOrder": row["series_order"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "topics": tags.get("topic", []),
        "technologies": tags.get("technology", []),
        "hashtags": tags.get("hashtag", []),
    }
    if with_body:
        out["content"] = row["body"]
    return out


def project_to_dict(row, tags: dict | None = None) -> dict:
    tags = tags or {}
    return {
        "id": row["id"],
        "title": row["title"],
        "slug": row["slug"],
        "status": row["status"],
        "description": row["description"],
        "images": json.loads(row["images"] or "[]"),
        "githubUrl": row["github_url"],
        "liveUrl": row["live_url"],
        "startDate": row["start_date"],
        "endDate": row["end_date"],
        "isOngoing": bool(row["is_ongoing"]),
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "technologies": tags.get("technology", []),
        "hashtags": tags.get("hashtag", []),
    }


def series_to_dict(row, **extra) -> dict:
    return {
        "id": row["id"],
        "title": row["title"],
        "slug": row["slug"],
        "description": row["description"],
        "status": row["status"],
        "coverImage": row["cover_image"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        **extra,
    }


def get_post_by_slug(slug: str, *, db, published_only: bool = True):
    sql = "SELECT * FROM post WHERE slug=?"
    if published_only:
        sql += " AND status='PUBLISHED'"
    return db.execute(sql, (slug,)).fetchone()


def get_project_by_slug(slug: str, *, db, published_only: bool = True):
    sql = "SELECT * FROM project WHERE slug=?"
    if published_only:
        sql += " AND status='PUBLISHED'"
    return db.execute(sql, (slug,)).fetchone()


def query_posts(*, db, status: str | None = "PUBLISHED", tag: str | None = None,
                kind: str | None = None, search: str | None = None):
    """Base SQL + params for a filtered, newest-first post listing."""
    where, params = [], []
    if status:
        where.append("p.status=?")
        params.append(status)
    if tag:
        tag_sql = "SELECT pt.post_id FROM post_tag pt JOIN tag t ON t.id=pt.tag_id WHERE t.slug=?"
        params.append(tag)
        if kind:
            tag_sql += " AND t.kind=?"
            params.append(kind)
        where.append(f"p.id IN ({tag_sql})")
    if search:
        where.append("(p.title LIKE ? OR p.body LIKE ? OR p.excerpt LIKE ?)")
        like = f"%{search}%"
        params.extend([like, like, like])
    sql = "SELECT p.* FROM post p"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY COALESCE(p.publish_date, p.created_at) DESC, p.id"
    return sql, tuple(params)


def seo_metadata(*, title: str, description: str, path: str, image: str | None = None,
                 kind: str = "website") -> dict:
    """Title / description / canonical URL plus Open Graph + Twitter fields."""
    base = site_url()
    name = site_name()
    full_title = title if title == name else f"{title} | {name}"
    description = _WS_RE.sub(" ", description or "").strip()[:EXCERPT_LEN]
    canonical = f"{base}/{path.lstrip('/')}" if path.strip("/") else f"{base}/"
    og = {
        "og:title": title,
        "og:description": description,
        "og:type": kind,
        "og:url": canonical,
        "og:site_name": name,
    }
    if image:
        og["og:image"] = image
    return {
        "title": full_title,
        "description": description,
        "canonical": canonical,
        "openGraph": og,
        "twitter": {
            "twitter:card": "summary_large_image" if image else "summary",
            "twitter:title": title,
            "twitter:description": description,
        },
    }


def post_seo(post) -> dict:
    return seo_metadata(
        title=post["title"],
        description=post["excerpt"] or make_excerpt(post["body"]),
        path=f"/blog/{post['slug']}",
        image=post["cover_image"],
        kind="article",
    )


DEMO_POSTS = [
    {
        "title": "Hello, folio",
        "content": "First post. The [setup notes](/blog/setting-up-flask) come next.",
        "topics": ["Meta"],
        "hashtags": ["intro"],
    },
    {
        "title": "Setting up Flask",
        "content": "A tiny app factory-free setup with SQLite.",
        "topics": ["Web"],
        "technologies": ["Python", "Flask"],
        "hashtags": ["howto"],
    },
    {
        "title": "SQLite in production",
        "content": "Why one file is often enough. See /blog/setting-up-flask.",
        "topics": ["Web", "Databases"],
        "technologies": ["Python", "SQLite"],
        "hashtags": ["howto"],
    },
]

DEMO_PROJECTS = [
    {
        "title": "folio",
        "description": "This site.",
        "technologies": ["Python", "Flask", "SQLite"],
        "hashtags": ["opensource"],
        "isOngoing": True,
    },
]


def seed_demo_content(*, db) -> int:
    n = 0
    for data in DEMO_POSTS:
        fields = validate_post_payload({**data, "status": "PUBLISHED"})
        if get_post_by_slug(generate_slug(fields["title"]), db=db, published_only=False):
            continue
        create_post(fields, db=db)
        n += 1
    for data in DEMO_PROJECTS:
        fields = validate_project_payload({**data, "status": "PUBLISHED"})
        if get_project_by_slug(generate_slug(fields["title"]), db=db, published_only=False):
            continue
        create_project(fields, db=db)
        n += 1
    return n


###############################################################################
# Templates + Views
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
{% if seo %}
<title>{{ seo.title }}</title>
<meta name="description" content="{{ seo.description }}">
<link rel="canonical" href="{{ seo.canonical }}">
{% for k, v in seo.openGraph.items() %}<meta property="{{ k }}" content="{{ v }}">
{% endfor %}
{% for k, v in seo.twitter.items() %}<meta name="{{ k }}" content="{{ v }}">
{% endfor %}
{% else %}
<title>{{ title or site_name() }}</title>
{% endif %}
<link rel="icon" type="image/svg+xml" href="/favicon.svg">
<style>
html{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,sans-serif}body{max-width:42em;margin:auto;padding:1rem;line-height:1.6;color:#ddd;background:#1d1f21}a{color:#8ab4f8;text-decoration:none}a:hover{text-decoration:underline}nav a{margin-right:1rem}nav a[aria-current]{font-weight:700}.meta{color:#999;font-size:.85em}.pill{display:inline-block;padding:.05em .6em;margin:0 .3em .3em 0;border-radius:1em;background:#333;font-size:.8em}.pill.topic{background:#2f4b6e}.pill.technology{background:#4b3f6e}.pill.hashtag{background:#3f5e3a}pre{background:#2a2c2e;padding:1em;overflow-x:auto}input,textarea,select{width:100%;box-sizing:border-box;margin-bottom:.7rem;padding:.4rem;background:#2a2c2e;color:#ddd;border:1px solid #444}table{width:100%;border-collapse:collapse}td,th{padding:.3em;border-bottom:1px solid #333;text-align:left}.bar{display:inline-block;height:.7em;background:#8ab4f8}.toast{background:#323232;padding:.5rem 1rem;margin:1rem 0}
</style>
<body>
<header>
  <h1 style="margin-bottom:.2rem"><a href="{{ url_for('index') }}">{{ site_name() }}</a></h1>
  {% if get_setting('site_tagline') %}<p class="meta">{{ get_setting('site_tagline') }}</p>{% endif %}
  <nav aria-label="Primary">
    <a href="{{ url_for('blog_list') }}" {% if kind=='blog' %}aria-current="page"{% endif %}>Blog</a>
    <a href="{{ url_for('project_list') }}" {% if kind=='projects' %}aria-current="page"{% endif %}>Projects</a>
    {% if is_admin() %}
      <a href="{{ url_for('admin_dashboard') }}" {% if kind=='admin' %}aria-current="page"{% endif %}>Admin</a>
      <a href="{{ url_for('logout') }}">Logout</a>
    {% else %}
      <a href="{{ url_for('login') }}" {% if kind=='login' %}aria-current="page"{% endif %}>Login</a>
    {% endif %}
  </nav>
</header>
{% with msgs = get_flashed_messages() %}
{% if msgs %}<div class="toast" role="status">{{ msgs|join('<br>')|safe }}</div>{% endif %}
{% endwith %}
<main id="main-content">
"""

TEMPL_EPILOG = """
</main>
<footer class="meta" style="margin-top:3rem;border-top:1px solid #333;padding-top:1rem">
  {{ site_name() }} · folio v{{ version }}
</footer>
</body>
</html>
"""

TEMPL_TAG_PILLS = """
{% macro pills(tags) %}
  {% for kind in ['topic', 'technology', 'hashtag'] %}
    {% for t in tags.get(kind, []) %}
      <a class="pill {{ kind }}" href="{{ url_for('blog_list', **{kind: t.slug}) }}">{% if kind == 'hashtag' %}#{% endif %}{{ t.name }}</a>
    {% endfor %}
  {% endfor %}
{% endmacro %}
"""

TEMPL_INDEX = wrap(TEMPL_TAG_PILLS + """
{% if get_setting('author_bio') %}<p>{{ get_setting('author_bio') }}</p>{% endif %}
<h2>Recent posts</h2>
{% for p in posts %}
  <article>
    <h3 style="margin-bottom:0"><a href="{{ url_for('post_detail', slug=p.slug) }}">{{ p.title }}</a></h3>
    <div class="meta">{{ p.publish_date|date }} · {{ p.read_time }} min</div>
    <p>{{ p.excerpt }}</p>
    {{ pills(tags.get(p.id, {})) }}
  </article>
{% else %}
  <p>Nothing published yet.</p>
{% endfor %}
{% if projects %}
<h2>Projects</h2>
<ul>
{% for pr in projects %}
  <li><a href="{{ url_for('project_detail', slug=pr.slug) }}">{{ pr.title }}</a>
      <span class="meta">{{ pr.description }}</span></li>
{% endfor %}
</ul>
{% endif %}
""")

TEMPL_BLOG_LIST = wrap(TEMPL_TAG_PILLS + """
<h2>Blog</h2>
<form method="get" style="display:flex;gap:.5rem">
  <input type="search" name="q" value="{{ q or '' }}" placeholder="Search posts" aria-label="Search posts">
</form>
{% if topics %}
<div>
  {% for t in topics %}
    <a class="pill topic" href="{{ url_for('blog_list', topic=t.slug) }}"
       {% if active == t.slug %}aria-current="true"{% endif %}>{{ t.name }} ({{ t.posts }})</a>
  {% endfor %}
</div>
{% endif %}
{% for p in posts %}
  <article>
    <h3 style="margin-bottom:0"><a href="{{ url_for('post_detail', slug=p.slug) }}">{{ p.title }}</a></h3>
    <div class="meta">{{ p.publish_date|date }} · {{ p.read_time }} min</div>
    <p>{{ p.excerpt }}</p>
    {{ pills(tags.get(p.id, {})) }}
  </article>
{% else %}
  <p>No posts found.</p>
{% endfor %}
{% if pages > 1 %}
<nav aria-label="Pagination" class="meta">
  {% if page > 1 %}<a href="{{ url_for('blog_list', page=page-1, **filters) }}">← newer</a>{% endif %}
  page {{ page }} / {{ pages }}
  {% if page < pages %}<a href="{{ url_for('blog_list', page=page+1, **filters) }}">older →</a>{% endif %}
</nav>
{% endif %}
""")

TEMPL_POST_DETAIL = wrap(TEMPL_TAG_PILLS + """
<article>
  <h2 style="margin-bottom:0">{{ post.title }}</h2>
  <div class="meta">
    {% if post.status != 'PUBLISHED' %}<strong>DRAFT</strong> · {% endif %}
    {{ post.publish_date|date }} · {{ post.read_time }} min read
    {% if is_admin() %} · <a href="{{ url_for('admin_post_edit', post_id=post.id) }}">edit</a>{% endif %}
  </div>
  {% if post.cover_image %}<img src="{{ post.cover_image }}" alt="" style="max-width:100%">{% endif %}
  <div class="e-content">{{ post.body|md }}</div>
  <div>{{ pills(tags) }}</div>
</article>
{% if related %}
<section>
  <h3>Related posts</h3>
  <ul>
  {% for r in related %}
    <li><a href="{{ url_for('post_detail', slug=r.blog.slug) }}">{{ r.blog.title }}</a>
      {% if r.sharedTags %}<span class="meta">· {{ r.sharedTags|join(', ') }}</span>{% endif %}</li>
  {% endfor %}
  </ul>
</section>
{% endif %}
""")

TEMPL_PROJECT_LIST = wrap("""
<h2>Projects</h2>
{% for pr in projects %}
  <article>
    <h3 style="margin-bottom:0"><a href="{{ url_for('project_detail', slug=pr.slug) }}">{{ pr.title }}</a></h3>
    <div class="meta">
      {{ pr.startDate|date }}{% if pr.isOngoing %} – ongoing{% elif pr.endDate %} – {{ pr.endDate|date }}{% endif %}
    </div>
    <p>{{ pr.description }}</p>
    {% for t in pr.technologies %}<span class="pill technology">{{ t.name }}</span>{% endfor %}
  </article>
{% else %}
  <p>No projects yet.</p>
{% endfor %}
""")

TEMPL_PROJECT_DETAIL = wrap("""
<article>
  <h2 style="margin-bottom:0">{{ pr.title }}</h2>
  <div class="meta">
    {{ pr.startDate|date }}{% if pr.isOngoing %} – ongoing{% elif pr.endDate %} – {{ pr.endDate|date }}{% endif %}
    {% if pr.githubUrl %} · <a href="{{ pr.githubUrl }}" rel="noopener">source</a>{% endif %}
    {% if pr.liveUrl %} · <a href="{{ pr.liveUrl }}" rel="noopener">live</a>{% endif %}
  </div>
  <div class="e-content">{{ pr.description|md }}</div>
  {% for img in pr.images %}<img src="{{ img }}" alt="" style="max-width:100%">{% endfor %}
  <div>
    {% for t in pr.technologies %}<span class="pill technology">{{ t.name }}</span>{% endfor %}
    {% for t in pr.hashtags %}<span class="pill hashtag">#{{ t.name }}</span>{% endfor %}
  </div>
</article>
""")


###############################################################################
# Public pages
###############################################################################
@app.route("/")
def index():
    db = get_db()
    posts = db.execute(
        """SELECT * FROM post WHERE status='PUBLISHED'
         ORDER BY COALESCE(publish_date, created_at) DESC, id LIMIT 5"""
    ).fetchall()
    projects = db.execute(
        "SELECT * FROM project WHERE status='PUBLISHED' ORDER BY COALESCE(start_date, created_at) DESC LIMIT 6"
    ).fetchall()
    return render_template_string(
        TEMPL_INDEX,
        posts=posts,
        projects=projects,
        tags=post_tags([p["id"] for p in posts], db=db),
        seo=seo_metadata(
            title=site_name(), description=get_setting("site_tagline", "") or "", path="/"
        ),
        kind="home",
    )


@app.route("/blog")
def blog_list():
    db = get_db()
    page = max(_int_arg("page", 1), 1)
    q = request.args.get("q", "").strip() or None

    filters: dict[str, str] = {}
    tag, tag_kind = None, None
    for k in TAG_KINDS:
        if request.args.get(k):
            tag, tag_kind = request.args[k], k
            filters[k] = tag
            break
    if q:
        filters["q"] = q

    sql, params = query_posts(db=db, tag=tag, kind=tag_kind, search=q)
    posts, pages = paginate(sql, params, page=page, per_page=page_size(), db=db)
    topics = [t for t in tag_usage("topic", db=db) if t["posts"]]
    return render_template_string(
        TEMPL_BLOG_LIST,
        posts=posts,
        tags=post_tags([p["id"] for p in posts], db=db),
        topics=topics,
        active=filters.get("topic"),
        q=q,
        page=page,
        pages=pages,
        filters=filters,
        title=f"Blog – {site_name()}",
        kind="blog",
    )


@app.route("/blog/<slug>")
def post_detail(slug):
    db = get_db()
    post = get_post_by_slug(slug, db=db, published_only=not is_admin())
    if post is None:
        abort(404)
    ranked = find_related_posts(post["id"], 3, db=db) or []
    return render_template_string(
        TEMPL_POST_DETAIL,
        post=post,
        tags=post_tags([post["id"]], db=db).get(post["id"], {}),
        related=related_payload(ranked, db=db),
        seo=post_seo(post),
        kind="blog",
    )


@app.route("/projects")
def project_list():
    db = get_db()
    rows = db.execute(
        "SELECT * FROM project WHERE status='PUBLISHED' "
        "ORDER BY is_ongoing DESC, COALESCE(start_date, created_at) DESC"
    ).fetchall()
    tags = project_tags([r["id"] for r in rows], db=db)
    return render_template_string(
        TEMPL_PROJECT_LIST,
        projects=[project_to_dict(r, tags.get(r["id"])) for r in rows],
        title=f"Projects – {site_name()}",
        kind="projects",
    )


@app.route("/projects/<slug>")
def project_detail(slug):
    db = get_db()
    row = get_project_by_slug(slug, db=db, published_only=not is_admin())
    if row is None:
        abort(404)
    pr = project_to_dict(row, project_tags([row["id"]], db=db).get(row["id"]))
    return render_template_string(
        TEMPL_PROJECT_DETAIL,
        pr=pr,
        seo=seo_metadata(
            title=pr["title"],
            description=make_excerpt(pr["description"]),
            path=f"/projects/{pr['slug']}",
            image=(pr["images"] or [None])[0],
        ),
        kind="projects",
    )


###############################################################################
# Public JSON API
###############################################################################
def _parse_uuid(value: str) -> str | None:
    try:
        return str(uuid.UUID(value))
    except (ValueError, AttributeError, TypeError):
        return None


def _bounded_int(name: str, default: int, lo: int, hi: int) -> int:
    """Strict integer query arg within [lo, hi]; anything else is a 400."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        val = int(raw)
    except ValueError:
        raise ValidationError("Invalid query parameters", {name: "must be an integer"}) from None
    if not lo <= val <= hi:
        raise ValidationError(
            "Invalid query parameters", {name: f"must be between {lo} and {hi}"}
        )
    return val


@app.route("/api/blog/<post_id>/related")
def api_related_posts(post_id):
    pid = _parse_uuid(post_id)
    if pid is None:
        app.logger.warning("Invalid blog ID in related posts request: %r", post_id)
        return {"error": "Invalid blog ID format"}, 400
    try:
        limit = _bounded_int("limit", RELATED_DEFAULT_LIMIT, 1, RELATED_MAX_LIMIT)
    except ValidationError as exc:
        app.logger.warning("Invalid query params in related posts request: %s", exc.fields)
        return {"error": "Invalid query parameters"}, 400

    db = get_db()
    ranked = find_related_posts(pid, limit, db=db)
    if ranked is None:
        return {"error": "Blog not found"}, 404
    related = related_payload(ranked, db=db)
    return (
        {"relatedBlogs": related, "total": len(related)},
        200,
        {"Cache-Control": "public, s-maxage=300, stale-while-revalidate=600"},
    )


@app.route("/api/blog")
def api_blog_list():
    db = get_db()
    status = (request.args.get("status") or "PUBLISHED").upper()
    if status not in POST_STATUSES and status != "ALL":
        raise ValidationError("Invalid query parameters", {"status": "unknown status"})
    if status != "PUBLISHED" and not is_admin():
        abort(401)
    limit = _bounded_int("limit", PAGE_DEFAULT, 1, API_LIST_MAX)
    offset = _bounded_int("offset", 0, 0, 1_000_000)

    sql, params = query_posts(
        db=db,
        status=None if status == "ALL" else status,
        tag=request.args.get("tag") or None,
        search=(request.args.get("search") or "").strip() or None,
    )
    total = db.execute(f"SELECT COUNT(*) FROM ({sql})", params).fetchone()[0]
    rows = db.execute(f"{sql} LIMIT ? OFFSET ?", params + (limit, offset)).fetchall()
    tags = post_tags([r["id"] for r in rows], db=db)
    return {
        "posts": [post_to_dict(r, tags.get(r["id"])) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@app.route("/api/blog/series/<slug>")
def api_series_detail(slug):
    db = get_db()
    row = db.execute(
        "SELECT * FROM blog_series WHERE slug=? AND status='PUBLISHED'", (slug,)
    ).fetchone()
    if row is None:
        return {"error": "Series not found"}, 404
    rows = series_posts(row["id"], db=db)
    tags = post_tags([r["id"] for r in rows], db=db)
    return series_to_dict(row, posts=[post_to_dict(r, tags.get(r["id"])) for r in rows])


@app.route("/api/blog/<slug>")
def api_blog_detail(slug):
    db = get_db()
    row = get_post_by_slug(slug, db=db, published_only=not is_admin())
    if row is None:
        return {"error": "Blog not found"}, 404
    tags = post_tags([row["id"]], db=db)
    return post_to_dict(row, tags.get(row["id"]), with_body=True)


@app.route("/api/projects")
def api_project_list():
    db = get_db()
    sql = "SELECT * FROM project"
    if not (is_admin() and request.args.get("status", "").upper() == "ALL"):
        sql += " WHERE status='PUBLISHED'"
    sql += " ORDER BY is_ongoing DESC, COALESCE(start_date, created_at) DESC"
    rows = db.execute(sql).fetchall()
    tags = project_tags([r["id"] for r in rows], db=db)
    return {"projects": [project_to_dict(r, tags.get(r["id"])) for r in rows], "total": len(rows)}


@app.route("/api/projects/<slug>")
def api_project_detail(slug):
    db = get_db()
    row = get_project_by_slug(slug, db=db, published_only=not is_admin())
    if row is None:
        return {"error": "Project not found"}, 404
    return project_to_dict(row, project_tags([row["id"]], db=db).get(row["id"]))


@app.route("/api/tags/<kind>")
def api_tag_list(kind):
    kind = normalize_kind(kind)
    tags = tag_usage(kind, db=get_db())
    return {"kind": kind, "tags": tags, "total": len(tags)}


###############################################################################
# Admin – login / logout
###############################################################################
TEMPL_LOGIN = wrap("""
<h2>Sign in</h2>
<form method="post" style="max-width:22rem">
  <label for="identifier">Username or e-mail</label>
  <input id="identifier" name="identifier" autocomplete="username" required value="{{ identifier or '' }}">
  <label for="password">Password</label>
  <input id="password" name="password" type="password" autocomplete="current-password" required>
  {% if error %}<p role="alert" style="color:#f88">{{ error }}</p>{% endif %}
  <button type="submit">Sign in</button>
</form>
""")


def _start_admin_session() -> None:
    session.clear()
    session.permanent = True
    session["logged_in"] = True
    session["csrf"] = secrets.token_hex(16)


@app.route("/admin/login", methods=["GET", "POST"])
@rate_limit(max_requests=LOGIN_MAX_REQUESTS, window=LOGIN_WINDOW_SEC, scope="login")
def login():
    if request.method == "POST":
        identifier = request.form.get("identifier", "").strip()
        row = authenticate(identifier, request.form.get("password", ""), db=get_db())
        if row is not None:
            _start_admin_session()
            app.logger.info("Admin %s signed in", row["username"])
            return redirect(url_for("admin_dashboard"))
        app.logger.warning("Failed sign-in for %r from %s", identifier, client_ip())
        return (
            render_template_string(
                TEMPL_LOGIN, identifier=identifier, error="Invalid credentials", kind="login"
            ),
            401,
        )
    if is_admin():
        return redirect(url_for("admin_dashboard"))
    return render_template_string(TEMPL_LOGIN, title="Sign in", kind="login")


@app.route("/api/admin/login", methods=["POST"])
@rate_limit(max_requests=LOGIN_MAX_REQUESTS, window=LOGIN_WINDOW_SEC, scope="login")
def api_login():
    data = request.get_json(silent=True) or {}
    errors: dict[str, str] = {}
    identifier = _clean_str(data, "username", errors) or _clean_str(data, "email", errors)
    password = data.get("password") if isinstance(data.get("password"), str) else ""
    if not identifier or not password:
        raise ValidationError("Invalid credentials format", errors or {"password": "is required"})

    row = authenticate(identifier, password, db=get_db())
    if row is None:
        app.logger.warning("Failed API sign-in for %r from %s", identifier, client_ip())
        return {"error": "Invalid credentials"}, 401

    token = generate_admin_token(row["id"])
    app.logger.info("Admin %s signed in via API", row["username"])
    resp = make_response(
        {
            "token": token,
            "user": {
                "id": row["id"],
                "username": row["username"],
                "email": row["email"],
                "role": row["role"],
            },
        }
    )
    resp.set_cookie(
        ADMIN_TOKEN_COOKIE,
        token,
        max_age=app.config["ADMIN_TOKEN_MAX_AGE"],
        httponly=True,
        secure=app.config["SESSION_COOKIE_SECURE"],
        samesite="Strict",
    )
    return resp


@app.route("/admin/logout")
def logout():
    session.clear()
    return redirect(url_for("index"))


@app.route("/api/admin/logout", methods=["POST"])
def api_logout():
    session.clear()
    resp = make_response({"success": True})
    resp.delete_cookie(ADMIN_TOKEN_COOKIE)
    return resp


###############################################################################
# Admin – dashboard + HTML editor
###############################################################################
def stats_snapshot(*, db, months: int = 12, top: int = 5) -> dict:
    """Counts behind the admin dashboard."""
    posts = {s.lower(): 0 for s in POST_STATUSES}
    for r in db.execute("SELECT status, COUNT(*) AS n FROM post GROUP BY status"):
        posts[r["status"].lower()] = r["n"]
    posts["total"] = sum(posts.values())

    pr = db.execute(
        """SELECT COUNT(*) AS total,
                  COALESCE(SUM(status='PUBLISHED'), 0) AS published,
                  COALESCE(SUM(is_ongoing), 0) AS ongoing
             FROM project"""
    ).fetchone()

    tags = {k: 0 for k in TAG_KINDS}
    for r in db.execute("SELECT kind, COUNT(*) AS n FROM tag GROUP BY kind"):
        tags[r["kind"]] = r["n"]

    monthly = db.execute(
        """SELECT substr(COALESCE(publish_date, created_at), 1, 7) AS month,
                  COUNT(*) AS count
             FROM post
            WHERE status='PUBLISHED'
         GROUP BY month
         ORDER BY month DESC
            LIMIT ?""",
        (months,),
    ).fetchall()

    top_tags = {}
    for kind in ("topic", "hashtag"):
        used = [t for t in tag_usage(kind, db=db) if t["posts"] + t["projects"]]
        used.sort(key=lambda t: (-(t["posts"] + t["projects"]), t["name"].lower()))
        top_tags[kind] = [
            {"name": t["name"], "slug": t["slug"], "count": t["posts"] + t["projects"]}
            for t in used[:top]
        ]

    return {
        "posts": posts,
        "projects": dict(pr),
        "tags": tags,
        "monthly": [dict(r) for r in reversed(monthly)],
        "topTags": top_tags,
    }


TEMPL_ADMIN = wrap("""
<h2>Dashboard</h2>
<p class="meta">Signed in as {{ username }} ·
  <a href="{{ url_for('admin_post_new') }}">new post</a></p>
<table>
  <tr><th>Posts</th><td>{{ stats.posts.total }} ({{ stats.posts.published }} published, {{ stats.posts.draft }} drafts)</td></tr>
  <tr><th>Projects</th><td>{{ stats.projects.total }} ({{ stats.projects.ongoing }} ongoing)</td></tr>
  <tr><th>Tags</th><td>{% for k, n in stats.tags.items() %}{{ n }} {{ k }}{% if not loop.last %} · {% endif %}{% endfor %}</td></tr>
</table>
{% if stats.monthly %}
<h3>Posts per month</h3>
{% set peak = stats.monthly|map(attribute='count')|max %}
<table>
{% for m in stats.monthly %}
  <tr><td style="width:6em">{{ m.month }}</td>
      <td><span class="bar" style="width:{{ (m.count / peak * 100)|round|int }}%"></span> {{ m.count }}</td></tr>
{% endfor %}
</table>
{% endif %}
{% for kind, items in stats.topTags.items() if items %}
<h3>Top {{ kind }}s</h3>
<p>{% for t in items %}<span class="pill {{ kind }}">{{ t.name }} · {{ t.count }}</span>{% endfor %}</p>
{% endfor %}
<h3>All posts</h3>
<table>
{% for p in posts %}
  <tr>
    <td><a href="{{ url_for('post_detail', slug=p.slug) }}">{{ p.title }}</a></td>
    <td class="meta">{{ p.status|lower }}</td>
    <td class="meta">{{ (p.publish_date or p.created_at)|date }}</td>
    <td><a href="{{ url_for('admin_post_edit', post_id=p.id) }}">edit</a></td>
  </tr>
{% endfor %}
</table>
""")

TEMPL_POST_FORM = wrap("""
<h2>{{ 'Edit post' if post_id else 'New post' }}</h2>
<form method="post">
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  <input name="title" placeholder="Title" value="{{ form.title or '' }}" required>
  <input name="slug" placeholder="slug (optional)" value="{{ form.slug or '' }}">
  <textarea name="content" rows="14" placeholder="Markdown" required>{{ form.content or '' }}</textarea>
  <input name="excerpt" placeholder="Excerpt (optional)" value="{{ form.excerpt or '' }}">
  <input name="coverImage" placeholder="Cover image URL" value="{{ form.coverImage or '' }}">
  <input name="topics" placeholder="Topics, comma separated" value="{{ form.topics or '' }}">
  <input name="technologies" placeholder="Technologies, comma separated" value="{{ form.technologies or '' }}">
  <input name="hashtags" placeholder="Hashtags, comma separated" value="{{ form.hashtags or '' }}">
  <select name="status">
    {% for s in statuses %}<option {% if form.status == s %}selected{% endif %}>{{ s }}</option>{% endfor %}
  </select>
  {% if errors %}
  <ul role="alert" style="color:#f88">{% for k, v in errors.items() %}<li>{{ k }} {{ v }}</li>{% endfor %}</ul>
  {% endif %}
  <button type="submit">Save</button>
</form>
{% if post_id %}
<form method="post" action="{{ url_for('admin_post_delete', post_id=post_id) }}"
      onsubmit="return confirm('Delete this post?');" style="margin-top:1rem">
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  <button type="submit">Delete</button>
</form>
{% endif %}
""")


@app.route("/admin")
def admin_dashboard():
    login_required()
    db = get_db()
    posts = db.execute(
        "SELECT * FROM post ORDER BY COALESCE(publish_date, created_at) DESC, id"
    ).fetchall()
    return render_template_string(
        TEMPL_ADMIN,
        stats=stats_snapshot(db=db),
        posts=posts,
        username=current_username(),
        title="Dashboard",
        kind="admin",
    )


def _post_form_defaults(row, tags: dict) -> dict:
    return {
        "title": row["title"],
        "slug": row["slug"],
        "content": row["body"],
        "excerpt": row["excerpt"],
        "coverImage": row["cover_image"],
        "status": row["status"],
        **{
            field: ", ".join(t["name"] for t in tags.get(kind, []))
            for kind, field in _TAG_FIELDS.items()
        },
    }


@app.route("/admin/posts/new", methods=["GET", "POST"])
def admin_post_new():
    login_required()
    form = request.form.to_dict() if request.method == "POST" else {"status": "DRAFT"}
    if request.method == "POST":
        try:
            fields = validate_post_payload(form)
        except ValidationError as exc:
            return (
                render_template_string(
                    TEMPL_POST_FORM, form=form, errors=exc.fields, statuses=POST_STATUSES,
                    post_id=None, kind="admin",
                ),
                400,
            )
        db = get_db()
        post_id = create_post(fields, db=db)
        slug = db.execute("SELECT slug FROM post WHERE id=?", (post_id,)).fetchone()["slug"]
        flash("Post created.")
        return redirect(url_for("post_detail", slug=slug))
    return render_template_string(
        TEMPL_POST_FORM, form=form, errors=None, statuses=POST_STATUSES,
        post_id=None, title="New post", kind="admin",
    )


@app.route("/admin/posts/<post_id>/edit", methods=["GET", "POST"])
def admin_post_edit(post_id):
    login_required()
    db = get_db()
    row = db.execute("SELECT * FROM post WHERE id=?", (post_id,)).fetchone()
    if row is None:
        abort(404)

    if request.method == "POST":
        form = request.form.to_dict()
        try:
            fields = validate_post_payload(form, partial=True)
        except ValidationError as exc:
            return (
                render_template_string(
                    TEMPL_POST_FORM, form=form, errors=exc.fields, statuses=POST_STATUSES,
                    post_id=post_id, kind="admin",
                ),
                400,
            )
        update_post(post_id, fields, db=db)
        slug = db.execute("SELECT slug FROM post WHERE id=?", (post_id,)).fetchone()["slug"]
        flash("Post saved.")
        return redirect(url_for("post_detail", slug=slug))

    form = _post_form_defaults(row, post_tags([post_id], db=db).get(post_id, {}))
    return render_template_string(
        TEMPL_POST_FORM, form=form, errors=None, statuses=POST_STATUSES,
        post_id=post_id, title="Edit post", kind="admin",
    )


@app.route("/admin/posts/<post_id>/delete", methods=["POST"])
def admin_post_delete(post_id):
    login_required()
    if not delete_post(post_id, db=get_db()):
        abort(404)
    flash("Post deleted.")
    return redirect(url_for("admin_dashboard"))


###############################################################################
# Admin JSON API – posts, projects, tags, settings, stats
###############################################################################
def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    return data


@app.route("/api/admin/posts", methods=["GET", "POST"])
def api_admin_posts():
    login_required()
    db = get_db()
    if request.method == "POST":
        post_id = create_post(validate_post_payload(_json_body()), db=db)
        row = db.execute("SELECT * FROM post WHERE id=?", (post_id,)).fetchone()
        return post_to_dict(row, post_tags([post_id], db=db).get(post_id), with_body=True), 201

    status = (request.args.get("status") or "").upper() or None
    if status and status not in POST_STATUSES:
        raise ValidationError("Invalid query parameters", {"status": "unknown status"})
    sql, params = query_posts(db=db, status=status)
    rows = db.execute(sql, params).fetchall()
    tags = post_tags([r["id"] for r in rows], db=db)
    return {"posts": [post_to_dict(r, tags.get(r["id"])) for r in rows], "total": len(rows)}


@app.route("/api/admin/posts/<post_id>", methods=["GET", "PUT", "DELETE"])
def api_admin_post(post_id):
    login_required()
    db = get_db()
    if request.method == "DELETE":
        if not delete_post(post_id, db=db):
            return {"error": "Blog not found"}, 404
        return {"success": True}
    if request.method == "PUT":
        fields = validate_post_payload(_json_body(), partial=True)
        if not update_post(post_id, fields, db=db):
            return {"error": "Blog not found"}, 404
    row = db.execute("SELECT * FROM post WHERE id=?", (post_id,)).fetchone()
    if row is None:
        return {"error": "Blog not found"}, 404
    return post_to_dict(row, post_tags([post_id], db=db).get(post_id), with_body=True)


@app.route("/api/admin/projects", methods=["GET", "POST"])
def api_admin_projects():
    login_required()
    db = get_db()
    if request.method == "POST":
        project_id = create_project(validate_project_payload(_json_body()), db=db)
        row = db.execute("SELECT * FROM project WHERE id=?", (project_id,)).fetchone()
        return project_to_dict(row, project_tags([project_id], db=db).get(project_id)), 201

    rows = db.execute(
        "SELECT * FROM project ORDER BY COALESCE(start_date, created_at) DESC"
    ).fetchall()
    tags = project_tags([r["id"] for r in rows], db=db)
    return {"projects": [project_to_dict(r, tags.get(r["id"])) for r in rows], "total": len(rows)}


@app.route("/api/admin/projects/<project_id>", methods=["GET", "PUT", "DELETE"])
def api_admin_project(project_id):
    login_required()
    db = get_db()
    if request.method == "DELETE":
        if not delete_project(project_id, db=db):
            return {"error": "Project not found"}, 404
        return {"success": True}
    if request.method == "PUT":
        fields = validate_project_payload(_json_body(), partial=True)
        if not update_project(project_id, fields, db=db):
            return {"error": "Project not found"}, 404
    row = db.execute("SELECT * FROM project WHERE id=?", (project_id,)).fetchone()
    if row is None:
        return {"error": "Project not found"}, 404
    return project_to_dict(row, project_tags([project_id], db=db).get(project_id))


@app.route("/api/admin/series", methods=["GET", "POST"])
def api_admin_series_list():
    login_required()
    db = get_db()
    if request.method == "POST":
        fields = validate_series_payload(_json_body())
        if fields.get("slug") and series_slug_taken(fields["slug"], db=db):
            return {"error": "A series with this slug already exists"}, 409
        series_id = create_series(fields, db=db)
        row = db.execute("SELECT * FROM blog_series WHERE id=?", (series_id,)).fetchone()
        return series_to_dict(row, postCount=0), 201

    rows = db.execute(
        """SELECT s.*, COUNT(p.id) AS post_count
             FROM blog_series s
        LEFT JOIN post p ON p.series_id = s.id
         GROUP BY s.id
         ORDER BY s.created_at DESC"""
    ).fetchall()
    return {
        "series": [series_to_dict(r, postCount=r["post_count"]) for r in rows],
        "total": len(rows),
    }


@app.route("/api/admin/series/<series_id>", methods=["GET", "PUT", "DELETE"])
def api_admin_series(series_id):
    login_required()
    db = get_db()
    if request.method == "DELETE":
        if not delete_series(series_id, db=db):
            return {"error": "Series not found"}, 404
        return {"success": True}
    if request.method == "PUT":
        fields = validate_series_payload(_json_body(), partial=True)
        if fields.get("slug") and series_slug_taken(fields["slug"], db=db, exclude_id=series_id):
            return {"error": "A series with this slug already exists"}, 409
        if not update_series(series_id, fields, db=db):
            return {"error": "Series not found"}, 404
    row = db.execute("SELECT * FROM blog_series WHERE id=?", (series_id,)).fetchone()
    if row is None:
        return {"error": "Series not found"}, 404
    rows = series_posts(series_id, db=db, published_only=False)
    tags = post_tags([r["id"] for r in rows], db=db)
    return series_to_dict(row, posts=[post_to_dict(r, tags.get(r["id"])) for r in rows])


def _tag_row(kind: str, tag_id: str, *, db):
    return db.execute("SELECT * FROM tag WHERE id=? AND kind=?", (tag_id, kind)).fetchone()


def _tag_slug_taken(kind: str, slug: str, *, db, exclude_id: str | None = None) -> bool:
    row = db.execute(
        "SELECT id FROM tag WHERE kind=? AND slug=? AND id IS NOT ?", (kind, slug, exclude_id)
    ).fetchone()
    return row is not None


@app.route("/api/admin/tags/<kind>", methods=["POST"])
def api_admin_tag_create(kind):
    login_required()
    kind = normalize_kind(kind)
    fields = validate_tag_payload(_json_body())
    db = get_db()
    slug = fields.get("slug") or generate_slug(fields["name"])
    if _tag_slug_taken(kind, slug, db=db):
        return {"error": f"A {kind} with this slug already exists"}, 409
    tag_id = new_id()
    db.execute(
        "INSERT INTO tag (id, kind, name, slug, description, created_at) VALUES (?,?,?,?,?,?)",
        (tag_id, kind, fields["name"], slug, fields.get("description"), now_iso()),
    )
    db.commit()
    app.logger.info("Created %s tag %s", kind, slug)
    return dict(_tag_row(kind, tag_id, db=db)), 201


@app.route("/api/admin/tags/<kind>/<tag_id>", methods=["PUT", "DELETE"])
def api_admin_tag(kind, tag_id):
    login_required()
    kind = normalize_kind(kind)
    db = get_db()
    row = _tag_row(kind, tag_id, db=db)
    if row is None:
        return {"error": "Tag not found"}, 404

    if request.method == "DELETE":
        db.execute("DELETE FROM tag WHERE id=?", (tag_id,))
        db.commit()
        app.logger.info("Deleted %s tag %s", kind, row["slug"])
        return {"success": True}

    fields = validate_tag_payload(_json_body(), partial=True)
    slug = fields.get("slug") or (generate_slug(fields["name"]) if "name" in fields else row["slug"])
    if _tag_slug_taken(kind, slug, db=db, exclude_id=tag_id):
        return {"error": f"A {kind} with this slug already exists"}, 409
    db.execute(
        "UPDATE tag SET name=?, slug=?, description=? WHERE id=?",
        (
            fields.get("name", row["name"]),
            slug,
            fields.get("description", row["description"]),
            tag_id,
        ),
    )
    db.commit()
    return dict(_tag_row(kind, tag_id, db=db))


@app.route("/api/admin/settings", methods=["GET", "PUT"])
def api_admin_settings():
    login_required()
    if request.method == "PUT":
        data = _json_body()
        unknown = sorted(set(data) - set(SETTING_KEYS))
        if unknown:
            raise ValidationError("Invalid settings", {k: "unknown setting" for k in unknown})
        if "page_size" in data:
            try:
                if int(data["page_size"]) < 1:
                    raise ValueError
            except (TypeError, ValueError):
                raise ValidationError("Invalid settings", {"page_size": "must be a positive integer"}) from None
        for k, v in data.items():
            set_setting(k, "" if v is None else str(v).strip())
        app.logger.info("Settings updated: %s", ", ".join(sorted(data)))
    return {k: get_setting(k, "") for k in SETTING_KEYS}


@app.route("/api/admin/stats")
def api_admin_stats():
    login_required()
    return stats_snapshot(db=get_db())


###############################################################################
# Admin – image upload (Cloudflare R2)
###############################################################################
def r2_config() -> dict[str, str]:
    return env_config(R2_ENV_KEYS)


def r2_is_configured(cfg: dict[str, str] | None = None) -> bool:
    cfg = cfg or r2_config()
    return all(cfg.get(k) for k in R2_REQUIRED_KEYS)


def _r2_client(cfg: dict[str, str]):
    endpoint = (
        cfg.get("R2_ENDPOINT")
        or f"https://{cfg['R2_ACCOUNT_ID']}.r2.cloudflarestorage.com"
    )
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        region_name="auto",
        aws_access_key_id=cfg["R2_ACCESS_KEY_ID"],
        aws_secret_access_key=cfg["R2_SECRET_ACCESS_KEY"],
    )


def r2_object_url(cfg: dict[str, str], key: str) -> str:
    base = cfg.get("R2_PUBLIC_BASE")
    if base:
        return f"{base.rstrip('/')}/{key.lstrip('/')}"
    return f"https://{cfg['R2_BUCKET']}.{cfg['R2_ACCOUNT_ID']}.r2.cloudflarestorage.com/{key.lstrip('/')}"


@app.route("/api/admin/upload", methods=["POST"])
def api_admin_upload():
    login_required()

    cfg = r2_config()
    if not r2_is_configured(cfg):
        return {"error": "Image uploads are not configured."}, 400

    f = request.files.get("file")
    if f is None or not f.filename:
        return {"error": "No file received."}, 400

    mime = (f.mimetype or "").lower()
    if mime not in IMAGE_MIMES:
        return {"error": "Only image uploads are allowed."}, 415

    clen = request.content_length
    if clen and clen > UPLOAD_MAX_BYTES:
        return {"error": "File too large (8 MiB max)."}, 413

    ext = Path(secure_filename(f.filename)).suffix.lower()
    key = f"covers/{utc_now().strftime('%Y/%m')}/{uuid.uuid4().hex}{ext}"
    try:
        f.stream.seek(0)
        _r2_client(cfg).upload_fileobj(
            f.stream, cfg["R2_BUCKET"], key, ExtraArgs={"ContentType": mime}
        )
    except (BotoCoreError, ClientError):
        app.logger.exception("R2 upload failed")
        return {"error": "Upload failed – check R2 credentials."}, 502

    app.logger.info("Uploaded %s (%s)", key, mime)
    return {"url": r2_object_url(cfg, key), "key": key}, 201


###############################################################################
# Analytics – visits, exits, summary
###############################################################################
_TABLET_RE = re.compile(r"ipad|tablet|kindle|silk|playbook", re.IGNORECASE)
_MOBILE_RE = re.compile(r"mobi|iphone|ipod|android|blackberry|opera mini|iemobile", re.IGNORECASE)
ANALYTICS_MAX_REQUESTS = 120


def detect_device(user_agent: str | None) -> str:
    ua = user_agent or ""
    if _TABLET_RE.search(ua) or ("android" in ua.lower() and "mobile" not in ua.lower()):
        return "tablet"
    if _MOBILE_RE.search(ua):
        return "mobile"
    return "desktop"


def record_visit(visitor_id: str, path: str, *, db, title: str | None = None,
                 referrer: str | None = None, user_agent: str | None = None) -> tuple[str, str]:
    """
    Log one page view. A visitor seen within the session timeout keeps
    their session; otherwise a new one is opened.
    """
    now = utc_now()
    stamp = now.isoformat(timespec="seconds")
    cutoff = (now - ANALYTICS_SESSION_TIMEOUT).isoformat(timespec="seconds")
    row = db.execute(
        """SELECT id FROM visitor_session
            WHERE visitor_id=? AND last_seen_at >= ?
         ORDER BY last_seen_at DESC LIMIT 1""",
        (visitor_id, cutoff),
    ).fetchone()
    if row:
        session_id = row["id"]
        db.execute("UPDATE visitor_session SET last_seen_at=? WHERE id=?", (stamp, session_id))
    else:
        session_id = new_id()
        db.execute(
            """INSERT INTO visitor_session
                   (id, visitor_id, user_agent, referrer, device, started_at, last_seen_at)
               VALUES (?,?,?,?,?,?,?)""",
            (session_id, visitor_id, user_agent, referrer, detect_device(user_agent), stamp, stamp),
        )
    visit_id = new_id()
    db.execute(
        "INSERT INTO page_visit (id, session_id, path, title, entered_at) VALUES (?,?,?,?,?)",
        (visit_id, session_id, path, title, stamp),
    )
    db.commit()
    return session_id, visit_id


def record_exit(visit_id: str, scroll_depth: int | None = None, *, db) -> dict | None:
    row = db.execute("SELECT * FROM page_visit WHERE id=?", (visit_id,)).fetchone()
    if row is None:
        return None
    now = utc_now()
    stamp = now.isoformat(timespec="seconds")
    duration = max(0, int((now - parse_iso(row["entered_at"])).total_seconds()))
    if scroll_depth is not None:
        scroll_depth = min(100, max(0, scroll_depth))
    db.execute(
        "UPDATE page_visit SET exited_at=?, duration=?, scroll_depth=COALESCE(?, scroll_depth) WHERE id=?",
        (stamp, duration, scroll_depth, visit_id),
    )
    sess = db.execute(
        "SELECT started_at FROM visitor_session WHERE id=?", (row["session_id"],)
    ).fetchone()
    total = max(0, int((now - parse_iso(sess["started_at"])).total_seconds()))
    db.execute(
        "UPDATE visitor_session SET ended_at=?, last_seen_at=?, total_duration=? WHERE id=?",
        (stamp, stamp, total, row["session_id"]),
    )
    db.commit()
    return {"visitId": visit_id, "duration": duration, "scrollDepth": scroll_depth}


def analytics_summary(days: int = 7, *, db, top: int = 10) -> dict:
    since = (utc_now() - timedelta(days=days)).isoformat(timespec="seconds")
    sess = db.execute(
        """SELECT COUNT(*) AS sessions, COUNT(DISTINCT visitor_id) AS visitors
             FROM visitor_session WHERE started_at >= ?""",
        (since,),
    ).fetchone()
    views = db.execute(
        "SELECT COUNT(*) AS n, AVG(duration) AS avg FROM page_visit WHERE entered_at >= ?",
        (since,),
    ).fetchone()
    top_pages = db.execute(
        """SELECT path, COUNT(*) AS views FROM page_visit
            WHERE entered_at >= ?
         GROUP BY path ORDER BY views DESC, path LIMIT ?""",
        (since, top),
    ).fetchall()
    devices = defaultdict(int)
    for r in db.execute(
        "SELECT device, COUNT(*) AS n FROM visitor_session WHERE started_at >= ? GROUP BY device",
        (since,),
    ):
        devices[r["device"] or "desktop"] += r["n"]
    daily = db.execute(
        """SELECT substr(entered_at, 1, 10) AS day, COUNT(*) AS views
             FROM page_visit WHERE entered_at >= ?
         GROUP BY day ORDER BY day""",
        (since,),
    ).fetchall()
    return {
        "days": days,
        "sessions": sess["sessions"],
        "uniqueVisitors": sess["visitors"],
        "pageViews": views["n"],
        "avgDuration": round(views["avg"] or 0, 1),
        "topPages": [dict(r) for r in top_pages],
        "devices": dict(devices),
        "daily": [dict(r) for r in daily],
    }


@app.route("/api/analytics/visit", methods=["POST"])
@rate_limit(max_requests=ANALYTICS_MAX_REQUESTS, window=60, scope="analytics")
def api_analytics_visit():
    data = _json_body()
    errors: dict[str, str] = {}
    visitor_id = _clean_str(data, "visitorId", errors, required=True, max_len=100)
    path = _clean_str(data, "path", errors, required=True, max_len=500)
    if path and not path.startswith("/"):
        errors["path"] = "must start with /"
    title = _clean_str(data, "title", errors, max_len=300)
    referrer = _clean_str(data, "referrer", errors, max_len=2000)
    if errors:
        raise ValidationError("Invalid visit", errors)

    session_id, visit_id = record_visit(
        visitor_id,
        path,
        db=get_db(),
        title=title,
        referrer=referrer or request.referrer,
        user_agent=request.headers.get("User-Agent"),
    )
    return {"sessionId": session_id, "visitId": visit_id}, 201


@app.route("/api/analytics/exit", methods=["POST"])
@rate_limit(max_requests=ANALYTICS_MAX_REQUESTS, window=60, scope="analytics")
def api_analytics_exit():
    data = _json_body()
    errors: dict[str, str] = {}
    visit_id = _clean_str(data, "visitId", errors, required=True, max_len=100)
    depth = data.get("scrollDepth")
    if depth is not None and (isinstance(depth, bool) or not isinstance(depth, (int, float))
                              or (isinstance(depth, float) and not math.isfinite(depth))):
        errors["scrollDepth"] = "must be a number"
    if errors:
        raise ValidationError("Invalid exit", errors)

    out = record_exit(visit_id, None if depth is None else int(depth), db=get_db())
    if out is None:
        return {"error": "Visit not found"}, 404
    return out


@app.route("/api/admin/analytics")
def api_admin_analytics():
    login_required()
    days = _bounded_int("days", 7, 1, ANALYTICS_MAX_DAYS)
    return analytics_summary(days, db=get_db())


###############################################################################
# Tools – counters, lucky number, wheel, favicon
###############################################################################
COUNTER_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")

app.extensions["random"] = random.Random()


def rng() -> random.Random:
    return app.extensions["random"]


def _counter_name(name: str) -> str:
    if not COUNTER_NAME_RE.match(name or ""):
        raise ValidationError("Invalid counter name", {"name": "lowercase letters, digits, - and _"})
    return name


def get_counter(name: str, *, db) -> int:
    row = db.execute("SELECT value FROM counter WHERE name=?", (name,)).fetchone()
    return row["value"] if row else 0


def increment_counter(name: str, step: int = 1, *, db) -> int:
    db.execute(
        """INSERT INTO counter (name, value, updated_at) VALUES (?,?,?)
           ON CONFLICT(name) DO UPDATE SET value = value + excluded.value,
                                           updated_at = excluded.updated_at""",
        (name, step, now_iso()),
    )
    db.commit()
    return get_counter(name, db=db)


def reset_counter(name: str, *, db) -> int:
    db.execute(
        """INSERT INTO counter (name, value, updated_at) VALUES (?, 0, ?)
           ON CONFLICT(name) DO UPDATE SET value = 0, updated_at = excluded.updated_at""",
        (name, now_iso()),
    )
    db.commit()
    return 0


@app.route("/api/tools/counters/<name>")
def api_counter(name):
    name = _counter_name(name)
    return {"name": name, "value": get_counter(name, db=get_db())}


@app.route("/api/tools/counters/<name>/increment", methods=["POST"])
def api_counter_increment(name):
    name = _counter_name(name)
    data = request.get_json(silent=True) or {}
    step = data.get("step", 1)
    if isinstance(step, bool) or not isinstance(step, int) or not -COUNTER_STEP_MAX <= step <= COUNTER_STEP_MAX:
        raise ValidationError(
            "Invalid step", {"step": f"must be an integer between -{COUNTER_STEP_MAX} and {COUNTER_STEP_MAX}"}
        )
    return {"name": name, "value": increment_counter(name, step, db=get_db())}


@app.route("/api/tools/counters/<name>/reset", methods=["POST"])
def api_counter_reset(name):
    name = _counter_name(name)
    return {"name": name, "value": reset_counter(name, db=get_db())}


def lucky_number(lo: int, hi: int) -> int:
    if lo > hi:
        raise ValidationError("Invalid range", {"min": "must not exceed max"})
    if hi - lo > LUCKY_SPAN_MAX:
        raise ValidationError("Invalid range", {"max": f"span must be at most {LUCKY_SPAN_MAX}"})
    return rng().randint(lo, hi)


@app.route("/api/tools/lucky-number")
def api_lucky_number():
    errors: dict[str, str] = {}
    bounds = {}
    for key, default in (("min", 1), ("max", 100)):
        try:
            bounds[key] = int(request.args.get(key, default))
        except ValueError:
            errors[key] = "must be an integer"
    if errors:
        raise ValidationError("Invalid range", errors)
    n = lucky_number(bounds["min"], bounds["max"])
    return {"number": n, "min": bounds["min"], "max": bounds["max"]}


def spin_wheel(names: list[str]) -> tuple[int, str]:
    """Pick one entry; blanks are dropped, duplicates count twice."""
    entries = [n.strip() for n in names if n and n.strip()]
    if not entries:
        raise ValidationError("Invalid names", {"names": "need at least one name"})
    if len(entries) > WHEEL_MAX_NAMES:
        raise ValidationError("Invalid names", {"names": f"at most {WHEEL_MAX_NAMES} names"})
    idx = rng().randrange(len(entries))
    return idx, entries[idx]


@app.route("/api/tools/wheel", methods=["POST"])
def api_wheel():
    names = _json_body().get("names")
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise ValidationError("Invalid names", {"names": "must be a list of strings"})
    idx, winner = spin_wheel(names)
    return {"winner": winner, "index": idx, "total": len([n for n in names if n.strip()])}


def build_favicon_zip(data: bytes) -> io.BytesIO:
    """
    Turn any image Pillow can read into a ZIP of square PNG icons plus a
    multi-size ``favicon.ico``. Non-square sources are centred on a
    transparent canvas. Raises ``UnidentifiedImageError`` for non-images.
    """
    with Image.open(io.BytesIO(data)) as src:
        src.load()
        img = src.convert("RGBA")
    side = max(img.size)
    square = Image.new("RGBA", (side, side), (0, 0, 0, 0))
    square.paste(img, ((side - img.width) // 2, (side - img.height) // 2))

    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as zf:
        for size in FAVICON_PNG_SIZES:
            buf = io.BytesIO()
            square.resize((size, size), Image.Resampling.LANCZOS).save(buf, format="PNG")
            zf.writestr(f"favicon-{size}x{size}.png", buf.getvalue())
        ico = io.BytesIO()
        square.save(ico, format="ICO", sizes=list(FAVICON_ICO_SIZES))
        zf.writestr("favicon.ico", ico.getvalue())
    out.seek(0)
    return out


@app.route("/api/tools/favicon", methods=["POST"])
def api_favicon():
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ValidationError("No file received", {"file": "is required"})
    data = f.read(FAVICON_MAX_BYTES + 1)
    if len(data) > FAVICON_MAX_BYTES:
        return {"error": "File too large (5 MiB max)."}, 413
    try:
        bundle = build_favicon_zip(data)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        app.logger.warning("Favicon conversion rejected %r", f.filename)
        return {"error": "Unsupported image."}, 415
    return send_file(
        bundle, mimetype="application/zip", as_attachment=True, download_name="favicons.zip"
    )


@app.route("/api/tools/seo")
def api_seo():
    slug = request.args.get("slug", "").strip()
    if slug:
        post = get_post_by_slug(slug, db=get_db(), published_only=not is_admin())
        if post is None:
            return {"error": "Blog not found"}, 404
        return post_seo(post)
    return seo_metadata(
        title=request.args.get("title") or site_name(),
        description=request.args.get("description") or get_setting("site_tagline", "") or "",
        path=request.args.get("path") or "/",
        image=request.args.get("image") or None,
    )


###############################################################################
# Chat – Gemini-backed assistant
###############################################################################
CHAT_MAX_REQUESTS = 20


def gemini_config() -> dict[str, str]:
    cfg = env_config(("GEMINI_API_KEY", "GEMINI_MODEL"))
    cfg.setdefault("GEMINI_MODEL", GEMINI_DEFAULT_MODEL)
    return cfg


def chat_system_prompt(*, db) -> str:
    author = get_setting("author_name") or site_name()
    lines = [
        f"You are the assistant on {author}'s personal site ({site_name()}).",
        "Answer briefly and only about the author, their writing and their projects.",
    ]
    bio = get_setting("author_bio")
    if bio:
        lines.append(f"About the author: {bio}")
    posts = db.execute(
        """SELECT title FROM post WHERE status='PUBLISHED'
         ORDER BY COALESCE(publish_date, created_at) DESC LIMIT 10"""
    ).fetchall()
    if posts:
        lines.append("Recent posts: " + "; ".join(p["title"] for p in posts))
    projects = db.execute("SELECT title FROM project WHERE status='PUBLISHED'").fetchall()
    if projects:
        lines.append("Projects: " + "; ".join(p["title"] for p in projects))
    return "\n".join(lines)


def generate_chat_reply(history: list[dict], *, system_prompt: str, cfg: dict[str, str]) -> str:
    """One ``generateContent`` round trip; *history* is ``[{"role", "content"}]``."""
    payload = {
        "systemInstruction": {"parts": [{"text": system_prompt}]},
        "contents": [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in history
        ],
    }
    try:
        resp = requests.post(
            GEMINI_ENDPOINT.format(model=cfg["GEMINI_MODEL"]),
            json=payload,
            headers={"x-goog-api-key": cfg["GEMINI_API_KEY"]},
            timeout=CHAT_TIMEOUT_SEC,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        app.logger.exception("Gemini request failed")
        raise ChatServiceError("Chat service unavailable") from exc

    try:
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(p.get("text", "") for p in parts).strip()
    except (KeyError, IndexError, TypeError, AttributeError):
        text = ""
    if not text:
        app.logger.warning("Gemini returned no text: %s", str(data)[:200])
        raise ChatServiceError("Empty reply from chat service")
    return text


def chat_messages(session_id: str, *, db, limit: int = CHAT_HISTORY_LIMIT) -> list[dict]:
    rows = db.execute(
        """SELECT * FROM (
               SELECT id, role, content, created_at FROM chat_message
                WHERE session_id=? ORDER BY id DESC LIMIT ?
           ) ORDER BY id""",
        (session_id, limit),
    ).fetchall()
    return [
        {"id": r["id"], "role": r["role"], "content": r["content"], "createdAt": r["created_at"]}
        for r in rows
    ]


def _add_chat_message(session_id: str, role: str, content: str, *, db) -> None:
    now = now_iso()
    db.execute(
        "INSERT INTO chat_message (session_id, role, content, created_at) VALUES (?,?,?,?)",
        (session_id, role, content, now),
    )
    db.execute("UPDATE chat_session SET updated_at=? WHERE id=?", (now, session_id))
    db.commit()


def process_chat_message(session_id: str, message: str, *, db) -> str:
    """Store the user turn, ask Gemini with the full history, store the reply."""
    cfg = gemini_config()
    if not cfg.get("GEMINI_API_KEY"):
        raise ApiError("Chat is not configured", 503)
    _add_chat_message(session_id, "user", message, db=db)
    reply = generate_chat_reply(
        chat_messages(session_id, db=db), system_prompt=chat_system_prompt(db=db), cfg=cfg
    )
    _add_chat_message(session_id, "assistant", reply, db=db)
    return reply


def _chat_session_or_404(session_id: str, *, db):
    row = db.execute("SELECT * FROM chat_session WHERE id=?", (session_id,)).fetchone()
    if row is None:
        raise ApiError("Chat session not found", 404)
    return row


@app.route("/api/chat/sessions", methods=["POST"])
def api_chat_session_create():
    data = request.get_json(silent=True) or {}
    errors: dict[str, str] = {}
    visitor_id = _clean_str(data, "visitorId", errors, max_len=100)
    if errors:
        raise ValidationError("Invalid chat session", errors)
    session_id = new_id()
    now = now_iso()
    db = get_db()
    db.execute(
        "INSERT INTO chat_session (id, visitor_id, created_at, updated_at) VALUES (?,?,?,?)",
        (session_id, visitor_id, now, now),
    )
    db.commit()
    return {"sessionId": session_id}, 201


@app.route("/api/chat/sessions/<session_id>/messages")
def api_chat_messages(session_id):
    db = get_db()
    _chat_session_or_404(session_id, db=db)
    msgs = chat_messages(session_id, db=db)
    return {"sessionId": session_id, "messages": msgs, "total": len(msgs)}


@app.route("/api/chat/sessions/<session_id>/messages", methods=["POST"])
@rate_limit(max_requests=CHAT_MAX_REQUESTS, window=60, scope="chat")
def api_chat_send(session_id):
    db = get_db()
    _chat_session_or_404(session_id, db=db)
    errors: dict[str, str] = {}
    message = _clean_str(_json_body(), "message", errors, required=True, max_len=CHAT_MESSAGE_MAX_LEN)
    if errors:
        raise ValidationError("Invalid message", errors)
    reply = process_chat_message(session_id, message, db=db)
    return {"sessionId": session_id, "reply": reply}


###############################################################################
# Resources – favicon, robots, sitemap
###############################################################################
@app.route("/favicon.svg")
def favicon():
    letter = xml_escape((site_name()[:1] or "f").upper())
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64">'
        '<rect width="64" height="64" rx="12" fill="#1d1f21"/>'
        '<text x="32" y="44" font-size="36" text-anchor="middle" '
        f'font-family="sans-serif" fill="#8ab4f8">{letter}</text></svg>'
    )
    return Response(svg, mimetype="image/svg+xml", headers={"Cache-Control": "public, max-age=86400"})


@app.route("/robots.txt")
def robots_txt():
    body = "\n".join(
        [
            "User-agent: *",
            "Disallow: /admin",
            "Disallow: /api/",
            f"Sitemap: {site_url()}/sitemap.xml",
            "",
        ]
    )
    return Response(body, mimetype="text/plain")


@app.route("/sitemap.xml")
def sitemap():
    db = get_db()
    base = site_url()
    urls = [(f"{base}/", None), (f"{base}/blog", None), (f"{base}/projects", None)]
    for r in db.execute(
        "SELECT slug, updated_at FROM post WHERE status='PUBLISHED' "
        "ORDER BY COALESCE(publish_date, created_at) DESC"
    ):
        urls.append((f"{base}/blog/{r['slug']}", r["updated_at"]))
    for r in db.execute("SELECT slug, updated_at FROM project WHERE status='PUBLISHED'"):
        urls.append((f"{base}/projects/{r['slug']}", r["updated_at"]))

    parts = ['<?xml version="1.0" encoding="UTF-8"?>',
             '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">']
    for loc, mod in urls:
        parts.append("  <url>")
        parts.append(f"    <loc>{xml_escape(loc)}</loc>")
        if mod:
            parts.append(f"    <lastmod>{xml_escape(mod[:10])}</lastmod>")
        parts.append("  </url>")
    parts.append("</urlset>")
    return Response("\n".join(parts), mimetype="application/xml")


###############################################################################
# Error pages
###############################################################################
TEMPL_404 = wrap("""
<h2>Page not found</h2>
<p>Nothing lives at <code>{{ path }}</code>. <a href="{{ url_for('index') }}">Back home</a>.</p>
""")

TEMPL_500 = wrap("""
<h2>Internal Server Error</h2>
<p>Something broke on our side. Please try again later.</p>
""")


@app.errorhandler(404)
def not_found(exc):
    if wants_json():
        return {"error": "Not found"}, 404
    return render_template_string(TEMPL_404, path=request.path, title="Not found"), 404


@app.errorhandler(500)
def internal_error(exc):
    app.logger.exception("Unhandled error on %s", request.path)
    if wants_json():
        return {"error": "Internal server error"}, 500
    return render_template_string(TEMPL_500, title="Error"), 500


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    with app.app_context():
        init_db()
    app.run(debug=True)
