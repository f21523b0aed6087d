"""tests/test_smoke.py"""

import pytest

from folio.blog import app


@pytest.mark.parametrize(
    "path",
    [
        "/",             # index
        "/blog",         # listing
        "/projects",     # projects
        "/admin/login",  # login form
        "/robots.txt",   # meta routes
        "/sitemap.xml",
        "/favicon.svg",
    ],
)
def test_public_routes_ok(client, path):
    rv = client.get(path)
    assert rv.status_code == 200


def test_not_found(client):
    rv = client.get("/does/not/exist")
    assert rv.status_code == 404
    assert b"Page not found" in rv.data
    assert b"folio" in rv.data


def test_api_not_found_is_json(client):
    rv = client.get("/api/nothing/here")
    assert rv.status_code == 404
    assert rv.get_json() == {"error": "Not found"}


def test_500_handler_renders_friendly_page(client, monkeypatch):
    def _boom():
        raise RuntimeError("kaboom!")

    monkeypatch.setitem(app.view_functions, "index", _boom)
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/")
    assert resp.status_code == 500
    assert b"Internal Server Error" in resp.data


def test_method_not_allowed_on_api_is_json(client):
    rv = client.get("/api/analytics/visit")
    assert rv.status_code == 405
    assert "error" in rv.get_json()


def test_robots_and_sitemap(client, auth_headers):
    client.post(
        "/api/admin/posts",
        json={"title": "Mapped", "content": "x", "status": "PUBLISHED"},
        headers=auth_headers,
    )
    client.post("/api/admin/posts", json={"title": "Unmapped", "content": "x"},
                headers=auth_headers)
    robots = client.get("/robots.txt").get_data(as_text=True)
    assert "Disallow: /admin" in robots
    assert "Sitemap: http://localhost:5000/sitemap.xml" in robots

    rv = client.get("/sitemap.xml")
    assert rv.mimetype == "application/xml"
    xml = rv.get_data(as_text=True)
    assert "<loc>http://localhost:5000/blog/mapped</loc>" in xml
    assert "unmapped" not in xml
    assert "<lastmod>2099-01-01</lastmod>" in xml


def test_favicon_svg_uses_site_initial(client):
    rv = client.get("/favicon.svg")
    assert rv.mimetype == "image/svg+xml"
    assert b">F</text>" in rv.data
