"""
tests/test_related.py
"""
from __future__ import annotations

import uuid

import pytest

from folio.blog import (
    PostSnapshot,
    ScoredCandidate,
    TagRef,
    app,
    extract_blog_links,
    group_tags,
    rank_candidates,
    related_posts,
    score_candidate,
)


# ───────────────────────── helpers ────────────────────────────────────
def _snap(pid: str, *, body: str = "", **tags: tuple[str, ...]) -> PostSnapshot:
    """Build a snapshot; ``tags`` maps kind → tag ids (``topic=("t1",)``)."""
    refs = [TagRef(tid, kind) for kind, ids in tags.items() for tid in ids]
    return PostSnapshot(pid, pid, pid.title(), body, group_tags(refs))


def _ids(ranked: list[ScoredCandidate]) -> list[str]:
    return [c.post.id for c in ranked]


def _create(client, headers, **payload) -> dict:
    payload.setdefault("content", "Body text.")
    payload.setdefault("status", "PUBLISHED")
    rv = client.post("/api/admin/posts", json=payload, headers=headers)
    assert rv.status_code == 201, rv.get_json()
    return rv.get_json()


# ───────────────────────── link extractor ─────────────────────────────
def test_extract_links_all_forms_lowercased():
    body = (
        'See /blog/My-Post, <a href="/blog/other-post">x</a> '
        "and [again](/blog/my-post)."
    )
    assert extract_blog_links(body) == {"my-post", "other-post"}


@pytest.mark.parametrize("body", ["", None, "no links here", "/blog/", "/projects/x"])
def test_extract_links_empty(body):
    assert extract_blog_links(body) == set()


# ───────────────────────── scorer ─────────────────────────────────────
def test_score_link_only():
    src = _snap("src")
    res = score_candidate(src, _snap("linked"), {"linked"})
    assert res.score == 4
    assert res.shared_tags == frozenset()


def test_score_two_shared_topics():
    src = _snap("src", topic=("t1", "t2", "t3"))
    cand = _snap("cand", topic=("t2", "t3", "t4"))
    res = score_candidate(src, cand, set())
    assert res.score == 6
    assert res.shared_tags == {"t2", "t3"}


def test_score_link_topic_and_two_hashtags():
    src = _snap("src", topic=("t1",), technology=("py",), hashtag=("h1", "h2"))
    cand = _snap("cand", topic=("t1",), technology=("go",), hashtag=("h1", "h2"))
    res = score_candidate(src, cand, {"cand"})
    assert res.score == 9
    assert res.shared_tags == {"t1", "h1", "h2"}


def test_score_all_kinds_sum():
    src = _snap("src", topic=("a",), technology=("b", "c"), hashtag=("d", "e", "f"))
    cand = _snap("cand", topic=("a",), technology=("b", "c"), hashtag=("d", "e", "f"))
    assert score_candidate(src, cand, set()).score == 3 + 2 * 2 + 3


def test_score_custom_weights():
    src = _snap("src", hashtag=("h",))
    cand = _snap("cand", hashtag=("h",))
    weights = {"link": 0, "topic": 0, "technology": 0, "hashtag": 10}
    assert score_candidate(src, cand, set(), weights=weights).score == 10


def test_score_partial_weights_fall_back_to_defaults():
    src = _snap("src", topic=("t",), hashtag=("h",))
    cand = _snap("cand", topic=("t",), hashtag=("h",))
    assert score_candidate(src, cand, {"cand"}, weights={"hashtag": 5}).score == 4 + 3 + 5


# ───────────────────────── ranker ─────────────────────────────────────
def test_rank_orders_by_score():
    src = _snap("src", topic=("t",), technology=("py",))
    x = _snap("x", hashtag=("nope",))
    x_scored = ScoredCandidate(x, 1, frozenset())
    y_scored = score_candidate(src, _snap("y", topic=("t",), technology=("py",)), {"y"})
    z_scored = score_candidate(src, _snap("z"), {"z"})
    ranked = rank_candidates([x_scored, y_scored, z_scored], 10)
    assert _ids(ranked) == ["y", "z", "x"]
    assert [c.score for c in ranked] == [9, 4, 1]


def test_rank_scores_three_seven_five():
    x, y, z = (ScoredCandidate(_snap(p), s, frozenset()) for p, s in (("x", 3), ("y", 7), ("z", 5)))
    assert _ids(rank_candidates([x, y, z], 5)) == ["y", "z", "x"]


def test_rank_keeps_top_five_of_ten():
    scored = [ScoredCandidate(_snap(f"p{s}"), s, frozenset()) for s in range(10, 0, -1)]
    assert [c.score for c in rank_candidates(scored, 5)] == [10, 9, 8, 7, 6]


def test_rank_ties_keep_input_order():
    a, b, c = (ScoredCandidate(_snap(p), 3, frozenset()) for p in "abc")
    assert _ids(rank_candidates([b, c, a], 5)) == ["b", "c", "a"]


def test_rank_truncates_and_filters_zero():
    scored = [ScoredCandidate(_snap(f"p{i}"), i % 3, frozenset()) for i in range(9)]
    ranked = rank_candidates(scored, 4)
    assert len(ranked) == 4
    assert all(c.score > 0 for c in ranked)
    assert _ids(ranked) == ["p2", "p5", "p8", "p1"]


@pytest.mark.parametrize("limit", [0, -1])
def test_rank_non_positive_limit(limit):
    assert rank_candidates([ScoredCandidate(_snap("a"), 5, frozenset())], limit) == []


def test_related_excludes_self_and_unrelated():
    src = _snap("src", body="see /blog/b", topic=("t",))
    pool = [src, _snap("a"), _snap("b"), _snap("c", topic=("t",))]
    ranked = related_posts(src, pool, 5)
    assert _ids(ranked) == ["b", "c"]


def test_related_is_deterministic():
    src = _snap("src", topic=("t",), hashtag=("h",))
    pool = [_snap(f"p{i}", topic=("t",) if i % 2 else (), hashtag=("h",)) for i in range(8)]
    first = related_posts(src, pool, 5)
    assert all(related_posts(src, pool, 5) == first for _ in range(5))


# ───────────────────────── HTTP contract ──────────────────────────────
def test_related_endpoint_ranks_and_names_tags(client, auth_headers):
    base = _create(client, auth_headers, title="Flask basics", topics=["Web"],
                   technologies=["Python"])
    _create(client, auth_headers, title="Unrelated", topics=["Cooking"])
    linked = _create(client, auth_headers, title="Deep dive",
                     content="Builds on [basics](/blog/flask-basics).")
    also = _create(client, auth_headers, title="Web things", topics=["Web"],
                   technologies=["Python"], hashtags=["howto"])

    rv = client.get(f"/api/blog/{base['id']}/related")
    assert rv.status_code == 200
    assert rv.headers["Cache-Control"] == "public, s-maxage=300, stale-while-revalidate=600"
    data = rv.get_json()
    assert data["total"] == 1
    assert [r["blog"]["id"] for r in data["relatedBlogs"]] == [also["id"]]
    assert data["relatedBlogs"][0]["score"] == 5
    assert data["relatedBlogs"][0]["sharedTags"] == ["Web", "Python"]

    # the link goes from "Deep dive" to "Flask basics", not the other way round
    rv = client.get(f"/api/blog/{linked['id']}/related")
    hit = rv.get_json()["relatedBlogs"][0]
    assert hit["blog"]["slug"] == "flask-basics"
    assert hit["score"] == 4
    assert hit["sharedTags"] == []
    assert set(hit["blog"]) >= {"id", "slug", "title", "excerpt", "publishDate"}


def test_related_endpoint_skips_drafts(client, auth_headers):
    src = _create(client, auth_headers, title="Source", topics=["Web"])
    _create(client, auth_headers, title="Draft twin", topics=["Web"], status="DRAFT")
    rv = client.get(f"/api/blog/{src['id']}/related")
    assert rv.get_json() == {"relatedBlogs": [], "total": 0}


def test_related_endpoint_limit_and_tie_order(client, auth_headers):
    src = _create(client, auth_headers, title="Hub", hashtags=["x"])
    made = [_create(client, auth_headers, title=f"Spoke {i}", hashtags=["x"]) for i in range(4)]
    rv = client.get(f"/api/blog/{src['id']}/related?limit=3")
    ids = [r["blog"]["id"] for r in rv.get_json()["relatedBlogs"]]
    # equal scores: newest first
    assert ids == [m["id"] for m in reversed(made)][:3]


@pytest.mark.parametrize("limit", ["0", "21", "abc", "-3"])
def test_related_endpoint_bad_limit(client, auth_headers, limit):
    src = _create(client, auth_headers, title="Lonely")
    rv = client.get(f"/api/blog/{src['id']}/related?limit={limit}")
    assert rv.status_code == 400
    assert rv.get_json() == {"error": "Invalid query parameters"}


def test_related_endpoint_bad_id(client):
    rv = client.get("/api/blog/not-a-uuid/related")
    assert rv.status_code == 400
    assert rv.get_json() == {"error": "Invalid blog ID format"}


def test_related_endpoint_unknown_post(client):
    rv = client.get(f"/api/blog/{uuid.uuid4()}/related")
    assert rv.status_code == 404
    assert rv.get_json() == {"error": "Blog not found"}


def test_related_weights_follow_config(client, auth_headers, monkeypatch):
    src = _create(client, auth_headers, title="Cfg", hashtags=["x"])
    _create(client, auth_headers, title="Cfg peer", hashtags=["x"])
    monkeypatch.setitem(app.config, "RELATED_WEIGHTS",
                        {"link": 4, "topic": 3, "technology": 2, "hashtag": 7})
    rv = client.get(f"/api/blog/{src['id']}/related")
    assert rv.get_json()["relatedBlogs"][0]["score"] == 7


def test_post_page_lists_related(client, auth_headers):
    _create(client, auth_headers, title="Alpha", topics=["Web"])
    _create(client, auth_headers, title="Beta", topics=["Web"])
    html = client.get("/blog/alpha").get_data(as_text=True)
    assert "Related posts" in html
    assert "/blog/beta" in html


def test_related_partial_config_weights(client, auth_headers, monkeypatch):
    src = _create(client, auth_headers, title="Partial", topics=["Web"], hashtags=["x"])
    _create(client, auth_headers, title="Partial peer", topics=["Web"], hashtags=["x"])
    monkeypatch.setitem(app.config, "RELATED_WEIGHTS", {"hashtag": 10})
    hit = client.get(f"/api/blog/{src['id']}/related").get_json()["relatedBlogs"][0]
    assert hit["score"] == 3 + 10
    assert hit["sharedTags"] == ["x", "Web"]  # heavier kind first


def test_tags_with_same_slug_are_not_shared(client, auth_headers):
    cpp = _create(client, auth_headers, title="Templates", technologies=["C++"])
    _create(client, auth_headers, title="Generics", technologies=["C#"])
    rv = client.get(f"/api/blog/{cpp['id']}/related")
    assert rv.get_json() == {"relatedBlogs": [], "total": 0}
