"""
tests/test_gallery.py — Public gallery listing
===============================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from possumbly.errors import BadRequestError
from possumbly.services import vote_service
from possumbly.services.gallery_service import list_gallery

EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


class TestListGallery:
    def test_only_public_memes(self, db_engine, make_user, make_meme):
        owner = make_user(invited=True)
        shown = make_meme(owner, public=True)
        make_meme(owner, public=False)

        page = list_gallery(db_engine, owner.id)
        assert [m["id"] for m in page.items] == [shown.id]

    def test_hot_prefers_newer_on_equal_votes(self, db_engine, make_user, make_meme):
        owner = make_user(invited=True)
        first = make_meme(owner, public=True, created_at=EPOCH)
        second = make_meme(owner, public=True, created_at=EPOCH + timedelta(seconds=45_000))
        for meme in (first, second):
            for _ in range(2):
                vote_service.cast_vote(db_engine, meme.id, make_user().id, 1)

        page = list_gallery(db_engine, owner.id, sort="hot")
        assert [m["id"] for m in page.items] == [second.id, first.id]

    def test_top_ties_rank_earlier_post_first(self, db_engine, make_user, make_meme):
        owner = make_user(invited=True)
        early = make_meme(owner, public=True, created_at=EPOCH)
        late = make_meme(owner, public=True, created_at=EPOCH + timedelta(days=1))
        best = make_meme(owner, public=True, created_at=EPOCH + timedelta(days=2))
        vote_service.cast_vote(db_engine, best.id, make_user().id, 1)

        page = list_gallery(db_engine, owner.id, sort="top")
        assert [m["id"] for m in page.items] == [best.id, early.id, late.id]

    def test_new_sort(self, db_engine, make_user, make_meme):
        owner = make_user(invited=True)
        old = make_meme(owner, public=True, created_at=EPOCH)
        new = make_meme(owner, public=True, created_at=EPOCH + timedelta(hours=1))
        page = list_gallery(db_engine, owner.id, sort="new")
        assert [m["id"] for m in page.items] == [new.id, old.id]

    def test_period_filter(self, db_engine, make_user, make_meme):
        owner = make_user(invited=True)
        now = EPOCH + timedelta(days=60)
        recent = make_meme(owner, public=True, created_at=now - timedelta(days=3))
        make_meme(owner, public=True, created_at=now - timedelta(days=20))
        now_ms = int(now.timestamp() * 1000)

        page = list_gallery(db_engine, owner.id, period="7d", now_ms=now_ms)
        assert [m["id"] for m in page.items] == [recent.id]
        assert list_gallery(db_engine, owner.id, period="30d", now_ms=now_ms).total == 2

    def test_item_shape(self, db_engine, make_user, make_meme, make_template):
        owner = make_user(invited=True, name="Possum Prime")
        template = make_template(owner, name="Awkward Possum")
        meme = make_meme(owner, template, public=True, created_at=EPOCH)
        viewer = make_user(invited=True)
        vote_service.cast_vote(db_engine, meme.id, viewer.id, -1)

        [item] = list_gallery(db_engine, viewer.id).items
        assert item["created_at"] == int(EPOCH.timestamp() * 1000)
        assert item["template_name"] == "Awkward Possum"
        assert item["template_filename"] == "tpl1.png"
        assert item["creator_name"] == "Possum Prime"
        assert (item["upvotes"], item["downvotes"], item["score"]) == (0, 1, -1)
        assert item["userVote"] == -1

    @pytest.mark.parametrize("kwargs, message", [
        ({"period": "1d"}, "Invalid period"),
        ({"sort": "random"}, "Invalid sort"),
    ])
    def test_invalid_filters(self, db_engine, make_user, kwargs, message):
        with pytest.raises(BadRequestError, match=message):
            list_gallery(db_engine, make_user().id, **kwargs)


class TestGalleryEndpoint:
    def test_pagination_clamped(self, client, make_user, make_meme, auth):
        viewer = make_user(invited=True)
        for i in range(3):
            make_meme(viewer, public=True, created_at=EPOCH + timedelta(minutes=i))

        resp = client.get("/api/gallery?limit=1000", headers=auth(viewer))
        assert resp.status_code == 200
        assert resp.json()["pagination"]["limit"] == 50

        resp = client.get("/api/gallery?limit=0&page=2", headers=auth(viewer))
        body = resp.json()
        assert body["pagination"] == {
            "page": 2,
            "limit": 1,
            "total": 3,
            "totalPages": 3,
            "hasNext": True,
            "hasPrev": True,
        }
        assert len(body["items"]) == 1

    def test_garbage_numbers_fall_back(self, client, make_user, auth):
        resp = client.get("/api/gallery?page=abc&limit=xyz", headers=auth(make_user(invited=True)))
        assert resp.status_code == 200
        assert resp.json()["pagination"]["page"] == 1
        assert resp.json()["pagination"]["limit"] == 20

    def test_garbage_suffix_keeps_leading_number(self, client, make_user, auth):
        resp = client.get("/api/gallery?page=2abc&limit=1.5", headers=auth(make_user(invited=True)))
        assert resp.status_code == 200
        assert resp.json()["pagination"]["page"] == 2
        assert resp.json()["pagination"]["limit"] == 1

    def test_invalid_period_is_400(self, client, make_user, auth):
        resp = client.get("/api/gallery?period=decade", headers=auth(make_user(invited=True)))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid period. Must be 7d, 30d, year, or all"

    def test_invalid_sort_is_400(self, client, make_user, auth):
        resp = client.get("/api/gallery?sort=old", headers=auth(make_user(invited=True)))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid sort. Must be hot, top, or new"

    def test_requires_invite(self, client, make_user, auth):
        resp = client.get("/api/gallery", headers=auth(make_user()))
        assert resp.status_code == 403
