"""
HTTP tests for the API (wizard flow, memos, feed, export, analysis, profile).

Run with: pytest tests/test_api.py -v
"""
import time

import pytest
from cachetools import TTLCache
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.json import JsonAdapter
from core import report_pdf
from core.image_storage import LocalImageStorage
from core.report_pdf import resolve_font_path
from main import app
import routers.wizard as wizard_router
from routers.wizard import wizard_sessions

TARO = {"X-User-Id": "u1", "X-User-Name": "Taro", "X-User-Email": "taro@example.com"}
HANAKO = {"X-User-Id": "u2", "X-User-Email": "hanako@example.com"}


@pytest.fixture
def client(tmp_path):
    app.state.storage_adapter = JsonAdapter(str(tmp_path / "json"))
    app.state.image_storage = LocalImageStorage(str(tmp_path / "uploads"), "http://testserver/uploads")
    wizard_sessions.clear()
    with TestClient(app) as c:
        yield c
    app.state.storage_adapter = None
    app.state.image_storage = None
    wizard_sessions.clear()


def _save_memo(client, headers, title="動物園", text="行きました", tag=None, public=False):
    """Drive the wizard through custom mode with one category and save."""
    wid = client.post("/wizard", headers=headers).json()["wizard_id"]
    base = f"/wizard/{wid}"
    assert client.post(f"{base}/type", json={"record_type": "building"}, headers=headers).status_code == 200
    assert client.post(f"{base}/mode", json={"record_mode": "custom"}, headers=headers).status_code == 200
    client.post(f"{base}/categories/toggle", json={"category_name": "お土産"}, headers=headers)
    client.post(f"{base}/categories/confirm", headers=headers)
    client.post(f"{base}/title", json={"title": title}, headers=headers)
    client.post(f"{base}/block/text", json={"text": text}, headers=headers)
    if tag:
        client.post(f"{base}/block/tags/toggle", json={"tag": tag}, headers=headers)
    assert client.post(f"{base}/review", headers=headers).status_code == 200
    if public:
        client.post(f"{base}/public/toggle", headers=headers)
    r = client.post(f"{base}/save", headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["saved_memo_id"]


class TestAmbient:
    """Health, auth and root endpoints."""

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/healthz").status_code == 200
        r = client.get("/readyz")
        assert r.status_code == 200
        assert "X-Request-ID" in r.headers

    def test_metrics(self, client):
        client.get("/")
        data = client.get("/metrics").json()
        assert data["requests"]["total"] >= 1
        assert "wizard_sessions" in data

    def test_requires_identity(self, client):
        assert client.post("/wizard").status_code == 401
        assert client.get("/memos").status_code == 401
        assert client.get("/analysis/stats").status_code == 401


class TestCatalogApi:
    """Catalog endpoints."""

    def test_default_categories(self, client):
        data = client.get("/catalog", params={"record_type": "activity"}, headers=TARO).json()
        names = [c["name"] for c in data["categories"]]
        assert names[0] == "活動内容の概要"
        assert len(names) == 7
        assert data["max_selection"] is None

    def test_custom_categories(self, client):
        data = client.get(
            "/catalog", params={"record_type": "building", "record_mode": "custom"}, headers=TARO
        ).json()
        assert len(data["categories"]) == 10
        assert data["max_selection"] == 10

    def test_tags_and_hints(self, client):
        tags = client.get("/catalog/tags", headers=TARO).json()
        assert "#反省" in tags["tags"]
        hints = client.get("/catalog/hints/トイレ", headers=TARO).json()
        assert [h["name"] for h in hints["templates"]] == ["基本情報", "設備", "アクセス"]
        assert client.get("/catalog/hints/unknown", headers=TARO).json()["templates"] == []


class TestWizardApi:
    """Wizard over HTTP."""

    def test_per_user_session_limit(self, client, monkeypatch):
        """A user over the limit loses their own oldest draft, never someone else's."""
        monkeypatch.setattr(wizard_router, "wizard_sessions", TTLCache(maxsize=4, ttl=60))
        monkeypatch.setattr(wizard_router, "MAX_SESSIONS_PER_USER", 2)

        taro_wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        hanako_wids = [client.post("/wizard", headers=HANAKO).json()["wizard_id"] for _ in range(3)]

        assert client.get(f"/wizard/{hanako_wids[0]}", headers=HANAKO).status_code == 404
        for wid in hanako_wids[1:]:
            assert client.get(f"/wizard/{wid}", headers=HANAKO).status_code == 200
        assert client.get(f"/wizard/{taro_wid}", headers=TARO).status_code == 200

    def test_full_cache_refuses_new_sessions(self, client, monkeypatch):
        monkeypatch.setattr(wizard_router, "wizard_sessions", TTLCache(maxsize=2, ttl=60))
        taro_wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        assert client.post("/wizard", headers=HANAKO).status_code == 201

        r = client.post("/wizard", headers={"X-User-Id": "u3"})
        assert r.status_code == 503
        assert r.json()["detail"] == "WIZARD_CAPACITY_REACHED"
        assert client.get(f"/wizard/{taro_wid}", headers=TARO).status_code == 200

    def test_default_flow(self, client):
        wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        base = f"/wizard/{wid}"
        client.post(f"{base}/type", json={"record_type": "building"}, headers=TARO)
        state = client.post(f"{base}/mode", json={"record_mode": "default"}, headers=TARO).json()
        assert state["step"] == "editing"
        assert state["block_count"] == 7
        assert state["hint"]["category_name"] == "施設の概要"

        client.post(f"{base}/block/text", json={"text": "概要"}, headers=TARO)
        for _ in range(6):
            assert client.post(f"{base}/next", headers=TARO).status_code == 200

        r = client.post(f"{base}/review", headers=TARO)
        assert r.status_code == 400
        assert r.json()["detail"]["code"] == "TITLE_REQUIRED"
        state = client.get(base, headers=TARO).json()
        assert state["step"] == "editing"
        assert state["block_index"] == 6
        assert state["draft"]["blocks"][0]["text"] == "概要"

    def test_invalid_transition_is_conflict(self, client):
        wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        r = client.post(f"/wizard/{wid}/next", headers=TARO)
        assert r.status_code == 409
        assert r.json()["detail"]["code"] == "INVALID_STEP"

    def test_foreign_session_not_found(self, client):
        wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        r = client.get(f"/wizard/{wid}", headers=HANAKO)
        assert r.status_code == 404
        assert r.json()["detail"] == "WIZARD_NOT_FOUND"

    def test_discard(self, client):
        wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        assert client.delete(f"/wizard/{wid}", headers=TARO).status_code == 204
        assert client.get(f"/wizard/{wid}", headers=TARO).status_code == 404

    def test_private_save(self, client):
        memo_id = _save_memo(client, TARO)
        memo = client.get(f"/memos/{memo_id}", headers=TARO).json()
        assert memo["title"] == "動物園"
        assert memo["user_name"] is None
        assert memo["is_public"] is False
        assert memo["blocks"][0]["text"] == "行きました"

    def test_public_save_uses_profile_name(self, client):
        client.put("/profile", json={"display_name": "たろう"}, headers=TARO)
        memo_id = _save_memo(client, TARO, public=True)
        memo = client.get(f"/memos/{memo_id}", headers=TARO).json()
        assert memo["user_name"] == "たろう"

    def test_block_image_upload(self, client):
        wid = client.post("/wizard", headers=TARO).json()["wizard_id"]
        base = f"/wizard/{wid}"
        client.post(f"{base}/type", json={"record_type": "building"}, headers=TARO)
        client.post(f"{base}/mode", json={"record_mode": "default"}, headers=TARO)

        r = client.post(
            f"{base}/block/image",
            files={"file": ("doc.pdf", b"%PDF-1.4", "application/pdf")},
            headers=TARO,
        )
        assert r.status_code == 400
        assert client.get(base, headers=TARO).json()["draft"]["blocks"][0]["image_url"] is None

        r = client.post(
            f"{base}/block/image",
            files={"file": ("photo.png", b"\x89PNG\r\n", "image/png")},
            headers=TARO,
        )
        assert r.status_code == 200
        block = r.json()["draft"]["blocks"][0]
        assert block["type"] == "image"
        assert block["image_url"].startswith("http://testserver/uploads/users/u1/temp/")

    def test_edit_existing(self, client):
        memo_id = _save_memo(client, TARO)
        r = client.post(f"/wizard/edit/{memo_id}", headers=HANAKO)
        assert r.status_code == 403

        state = client.post(f"/wizard/edit/{memo_id}", headers=TARO).json()
        assert state["step"] == "editing"
        assert state["editing_memo_id"] == memo_id
        base = f"/wizard/{state['wizard_id']}"
        client.post(f"{base}/title", json={"title": "水族館"}, headers=TARO)
        assert client.post(f"{base}/save", headers=TARO).status_code == 200
        assert client.get(f"/memos/{memo_id}", headers=TARO).json()["title"] == "水族館"

    def test_edit_deleted_memo(self, client):
        memo_id = _save_memo(client, TARO)
        wid = client.post(f"/wizard/edit/{memo_id}", headers=TARO).json()["wizard_id"]
        client.delete(f"/memos/{memo_id}", headers=TARO)
        r = client.post(f"/wizard/{wid}/save", headers=TARO)
        assert r.status_code == 404
        assert r.json()["detail"] == "MEMO_NOT_FOUND"


class TestMemosApi:
    """Listing, feed, edit, delete and export."""

    def test_list_and_filter(self, client):
        _save_memo(client, TARO, title="動物園", tag="#反省")
        time.sleep(0.01)
        _save_memo(client, TARO, title="Aquarium", text="fish")
        _save_memo(client, HANAKO, title="他人の動物園")

        data = client.get("/memos", headers=TARO).json()
        assert data["count"] == 2
        assert [m["title"] for m in data["memos"]] == ["Aquarium", "動物園"]

        assert client.get("/memos", params={"keyword": "AQUA"}, headers=TARO).json()["count"] == 1
        tagged = client.get("/memos", params={"tag": "#反省"}, headers=TARO).json()
        assert [m["title"] for m in tagged["memos"]] == ["動物園"]

    def test_keyword_whitespace_is_kept(self, client):
        _save_memo(client, TARO, title="zoo trip")
        _save_memo(client, TARO, title="zootopia")
        r = client.get("/memos", params={"keyword": "zoo "}, headers=TARO).json()
        assert [m["title"] for m in r["memos"]] == ["zoo trip"]
        _save_memo(client, HANAKO, title="動物園", public=True)
        assert client.get("/memos/public", headers=TARO).json()["count"] == 1
        assert client.get("/memos/public", params={"keyword": " "}, headers=TARO).json()["count"] == 0

    def test_public_feed(self, client):
        _save_memo(client, TARO, title="private")
        public_id = _save_memo(client, HANAKO, title="shared", public=True)
        feed = client.get("/memos/public", headers=TARO).json()
        assert [m["memo_id"] for m in feed["memos"]] == [public_id]
        assert feed["memos"][0]["user_name"] == "hanako"

    def test_private_memo_forbidden(self, client):
        memo_id = _save_memo(client, TARO)
        assert client.get(f"/memos/{memo_id}", headers=HANAKO).status_code == 403
        assert client.get(f"/memos/{memo_id}/export.csv", headers=HANAKO).status_code == 403

    def test_missing_memo(self, client):
        r = client.get("/memos/nope", headers=TARO)
        assert r.status_code == 404
        assert r.json()["detail"] == "MEMO_NOT_FOUND"

    def test_patch(self, client):
        memo_id = _save_memo(client, TARO)
        memo = client.get(f"/memos/{memo_id}", headers=TARO).json()
        blocks = memo["blocks"] + [{"category_name": "記念品", "text": "写真", "tags": ["#気づき"], "order": 5}]

        r = client.patch(
            f"/memos/{memo_id}",
            json={"title": "新しい", "blocks": blocks, "is_public": True},
            headers=TARO,
        )
        assert r.status_code == 200, r.text
        data = r.json()
        assert data["title"] == "新しい"
        assert [b["order"] for b in data["blocks"]] == [0, 1]
        assert data["is_public"] is True
        assert data["user_name"] == "Taro"

        r = client.patch(f"/memos/{memo_id}", json={"is_public": False}, headers=TARO)
        assert r.json()["user_name"] is None

    def test_patch_rejects_bad_input(self, client):
        memo_id = _save_memo(client, TARO)
        assert client.patch(f"/memos/{memo_id}", json={"title": "  "}, headers=TARO).status_code == 422
        r = client.patch(
            f"/memos/{memo_id}",
            json={"blocks": [{"category_name": "所感", "tags": ["#nope"]}]},
            headers=TARO,
        )
        assert r.status_code == 400
        assert client.patch(f"/memos/{memo_id}", json={"title": "x"}, headers=HANAKO).status_code == 403

    def test_patch_image_urls(self, client):
        """Only images stored by the service, or already on the memo, can be attached."""
        memo_id = _save_memo(client, TARO)
        for url in (
            "http://169.254.169.254/latest/meta-data/",
            "http://testserver/uploads/../../etc/passwd",
            "https://drive.google.com.evil.example/uc?id=x",
        ):
            r = client.patch(
                f"/memos/{memo_id}",
                json={"blocks": [{"category_name": "所感", "image_url": url}]},
                headers=TARO,
            )
            assert r.status_code == 400, url
            assert r.json()["detail"] == "Image URL was not issued by this service"

        uploaded = client.post(
            "/images", files={"file": ("a.jpg", b"\xff\xd8\xff", "image/jpeg")}, headers=TARO
        ).json()["url"]
        r = client.patch(
            f"/memos/{memo_id}",
            json={"blocks": [{"category_name": "所感", "image_url": uploaded}]},
            headers=TARO,
        )
        assert r.status_code == 200, r.text
        assert r.json()["blocks"][0]["image_url"] == uploaded

        # unchanged blocks round-trip
        blocks = r.json()["blocks"]
        assert client.patch(f"/memos/{memo_id}", json={"blocks": blocks}, headers=TARO).status_code == 200

    def test_delete(self, client):
        memo_id = _save_memo(client, TARO)
        assert client.delete(f"/memos/{memo_id}", headers=HANAKO).status_code == 403
        assert client.delete(f"/memos/{memo_id}", headers=TARO).status_code == 204
        assert client.get(f"/memos/{memo_id}", headers=TARO).status_code == 404

    def test_export_csv(self, client):
        memo_id = _save_memo(client, TARO, tag="#気づき")
        r = client.get(f"/memos/{memo_id}/export.csv", headers=TARO)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert r.content.startswith("\ufeff".encode("utf-8"))
        text = r.content.decode("utf-8-sig")
        assert '"お土産","行きました","#気づき"' in text

    def test_export_pdf(self, client):
        if resolve_font_path() is None:
            pytest.skip("no Japanese-capable font installed")
        memo_id = _save_memo(client, TARO)
        r = client.get(f"/memos/{memo_id}/export.pdf", headers=TARO)
        assert r.status_code == 200
        assert r.content.startswith(b"%PDF")

    def test_export_pdf_without_font(self, client, monkeypatch):
        monkeypatch.setattr(report_pdf, "CJK_FONT_CANDIDATES", ())
        memo_id = _save_memo(client, TARO)
        r = client.get(f"/memos/{memo_id}/export.pdf", headers=TARO)
        assert r.status_code == 503
        assert r.json()["detail"] == "PDF_FONT_UNAVAILABLE"


class TestImagesApi:
    """Standalone image upload."""

    def test_upload(self, client):
        r = client.post("/images", files={"file": ("a.jpg", b"\xff\xd8\xff", "image/jpeg")}, headers=TARO)
        assert r.status_code == 201
        assert "/users/u1/temp/" in r.json()["url"]

    def test_upload_to_foreign_memo(self, client):
        memo_id = _save_memo(client, TARO)
        r = client.post(
            "/images",
            files={"file": ("a.jpg", b"\xff\xd8\xff", "image/jpeg")},
            data={"memo_id": memo_id},
            headers=HANAKO,
        )
        assert r.status_code == 403

    def test_rejects_large_file(self, client):
        big = b"\x00" * (5 * 1024 * 1024 + 1)
        r = client.post("/images", files={"file": ("a.png", big, "image/png")}, headers=TARO)
        assert r.status_code == 400


class TestAnalysisAndProfile:
    """Stats and profile endpoints."""

    def test_stats(self, client):
        _save_memo(client, TARO, tag="#反省")
        _save_memo(client, TARO, tag="#気づき")
        _save_memo(client, HANAKO, tag="#反省")
        data = client.get("/analysis/stats", headers=TARO).json()
        assert data["total_count"] == 2
        assert data["reflection_count"] == 1
        assert data["current_month_count"] == 2
        assert len(data["monthly_counts"]) == 6
        assert data["monthly_counts"][-1]["count"] == 2
        assert {t["tag"] for t in data["top_tags"]} == {"#反省", "#気づき"}

    def test_profile(self, client):
        data = client.get("/profile", headers=TARO).json()
        assert data["display_name"] == "Taro"
        assert data["email"] == "taro@example.com"

        r = client.put("/profile", json={"display_name": "  たろう ", "bio": "hi"}, headers=TARO)
        assert r.status_code == 200
        assert r.json()["display_name"] == "たろう"
        assert client.get("/profile", headers=TARO).json()["bio"] == "hi"

        assert client.put("/profile", json={"display_name": " "}, headers=TARO).status_code == 422
