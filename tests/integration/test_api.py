"""Integration tests for caricature.api.main — FastAPI REST API endpoints.

All tests use the FastAPI TestClient with the vendor replaced by
``FakeVendor`` so no Replicate or Supabase access occurs.  Tests cover
every endpoint:

- ``GET /health`` — Liveness.
- ``GET /styles`` — Prompt table listing.
- ``POST /reload-prompts`` — Manual reload.
- ``POST /projects`` — Project creation.
- ``PUT /projects/{id}/upload`` — Photo upload.
- ``POST /projects/{id}/upload-complete`` — Preview generation.
- ``GET /projects/{id}`` — Project record.
- ``GET /projects/{id}/preview`` — Preview bytes.
- ``POST /preview`` — Stateless base64 preview.
"""

from __future__ import annotations

import base64
import uuid
from io import BytesIO

import pytest
from PIL import Image

from caricature.core.errors import RateLimitError, VendorError
from caricature.core.prompt_store import STATIC_BACKGROUNDS
from tests.conftest import make_image_bytes


def _create(client, **payload) -> str:
    resp = client.post("/projects", json=payload)
    assert resp.status_code == 200
    return resp.json()["project_id"]


def _upload(client, project_id: str, data: bytes | None = None) -> None:
    resp = client.put(
        f"/projects/{project_id}/upload",
        content=data if data is not None else make_image_bytes(),
        headers={"Content-Type": "image/jpeg"},
    )
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Service endpoints.
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}


class TestStyles:
    """Test GET /styles — selectable prompt entries."""

    def test_lists_all_three_tables(self, test_client):
        data = test_client.get("/styles").json()
        assert {s["id"] for s in data["styles"]} >= {"S01", "S02", "S03", "S04", "S05", "S06"}
        assert [e["id"] for e in data["exaggeration_levels"]] == ["mild", "medium", "bold"]
        assert any(b["id"] == "BG01" for b in data["backgrounds"])

    def test_entries_have_names_only(self, test_client):
        """Prompt text is never exposed to clients."""
        style = test_client.get("/styles").json()["styles"][0]
        assert set(style) == {"id", "name"}


class TestReloadPrompts:
    def test_reload_reports_success_and_time(self, test_client):
        resp = test_client.post("/reload-prompts")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert isinstance(data["loaded_at"], int)
        assert data["loaded_at"] > 1_600_000_000_000  # epoch milliseconds


# ---------------------------------------------------------------------------
# Project lifecycle.
# ---------------------------------------------------------------------------


class TestCreateProject:
    def test_returns_id_and_upload_url(self, test_client):
        resp = test_client.post("/projects", json={"style_id": "S02B"})
        data = resp.json()
        assert uuid.UUID(data["project_id"])
        assert data["upload_url"] == f"http://testserver/projects/{data['project_id']}/upload"

    def test_forwarded_proto_respected(self, test_client):
        resp = test_client.post("/projects", json={}, headers={"X-Forwarded-Proto": "https"})
        assert resp.json()["upload_url"].startswith("https://testserver/projects/")

    def test_body_is_optional(self, test_client):
        resp = test_client.post("/projects")
        assert resp.status_code == 200

    def test_new_project_has_defaults(self, test_client):
        project_id = _create(test_client)
        data = test_client.get(f"/projects/{project_id}").json()
        assert data["status"] == "created"
        assert data["style_id"] == "S01"
        assert data["background"] == "BG01"
        assert data["aspect_ratio"] == "2:3"
        assert data["preview_url"] is None


class TestUpload:
    def test_upload_sets_uploaded(self, test_client):
        project_id = _create(test_client)
        _upload(test_client, project_id)
        assert test_client.get(f"/projects/{project_id}").json()["status"] == "uploaded"

    def test_empty_body_is_400(self, test_client):
        project_id = _create(test_client)
        resp = test_client.put(f"/projects/{project_id}/upload", content=b"")
        assert resp.status_code == 400
        assert resp.json() == {"error": "No file data received"}
        assert test_client.get(f"/projects/{project_id}").json()["status"] == "created"

    def test_oversized_body_is_400(self, test_client):
        project_id = _create(test_client)
        resp = test_client.put(f"/projects/{project_id}/upload", content=b"x" * (1024 * 1024 + 1))
        assert resp.status_code == 400

    def test_declared_length_over_limit_rejected_before_reading(self, test_client):
        """A Content-Length above the limit is refused whatever the body holds."""
        project_id = _create(test_client)
        resp = test_client.put(
            f"/projects/{project_id}/upload",
            content=make_image_bytes(),
            headers={"Content-Type": "image/jpeg", "Content-Length": str(2 * 1024 * 1024)},
        )
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("File too large")
        assert test_client.get(f"/projects/{project_id}").json()["status"] == "created"

    def test_chunked_body_over_limit_rejected(self, test_client):
        project_id = _create(test_client)
        chunks = (b"x" * (256 * 1024) for _ in range(5))
        resp = test_client.put(f"/projects/{project_id}/upload", content=chunks)
        assert resp.status_code == 400
        assert test_client.get(f"/projects/{project_id}").json()["status"] == "created"

    def test_unknown_project_is_404(self, test_client):
        resp = test_client.put(f"/projects/{uuid.uuid4()}/upload", content=b"data")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Project not found"}


class TestUploadComplete:
    def test_full_lifecycle(self, test_client):
        project_id = _create(test_client, style_id="S03C", background="BG02")
        _upload(test_client, project_id)

        resp = test_client.post(f"/projects/{project_id}/upload-complete", json={})
        assert resp.status_code == 200
        preview_url = resp.json()["preview_url"]
        assert preview_url == f"http://testserver/projects/{project_id}/preview"

        record = test_client.get(f"/projects/{project_id}").json()
        assert record["status"] == "preview_ready"
        assert record["preview_url"] == preview_url

        preview = test_client.get(f"/projects/{project_id}/preview")
        assert preview.status_code == 200
        assert preview.headers["content-type"] == "image/jpeg"
        assert Image.open(BytesIO(preview.content)).format == "JPEG"

    def test_request_overrides_are_stored(self, test_client):
        project_id = _create(test_client)
        _upload(test_client, project_id)
        test_client.post(
            f"/projects/{project_id}/upload-complete",
            json={"style_id": "S05A", "background": "BG04"},
        )
        record = test_client.get(f"/projects/{project_id}").json()
        assert record["style_id"] == "S05A"
        assert record["background"] == "BG04"

    def test_without_upload_is_400(self, test_client):
        project_id = _create(test_client)
        resp = test_client.post(f"/projects/{project_id}/upload-complete")
        assert resp.status_code == 400
        assert resp.json() == {"error": "No image found for this project"}

    def test_unreadable_upload_is_400(self, test_client, vendor):
        project_id = _create(test_client)
        _upload(test_client, project_id, b"this is not a photo")
        resp = test_client.post(f"/projects/{project_id}/upload-complete")
        assert resp.status_code == 400
        assert vendor.stylize_requests == []

    def test_vendor_failure_is_502_and_status_kept(self, test_client, vendor):
        project_id = _create(test_client)
        _upload(test_client, project_id)
        vendor.stylize_failures = [VendorError("Replicate prediction failed")]

        resp = test_client.post(f"/projects/{project_id}/upload-complete")
        assert resp.status_code == 502
        assert resp.json() == {"error": "Replicate prediction failed"}
        assert test_client.get(f"/projects/{project_id}").json()["status"] == "uploaded"

    def test_rate_limit_recovers(self, test_client, vendor, sleep_recorder):
        project_id = _create(test_client)
        _upload(test_client, project_id)
        vendor.stylize_failures = [RateLimitError("429"), RateLimitError("429")]

        resp = test_client.post(f"/projects/{project_id}/upload-complete")
        assert resp.status_code == 200
        assert sleep_recorder.delays == [5.0, 10.0]

    def test_unknown_project_is_404(self, test_client):
        resp = test_client.post(f"/projects/{uuid.uuid4()}/upload-complete")
        assert resp.status_code == 404


class TestGetProject:
    def test_unknown_is_404(self, test_client):
        resp = test_client.get(f"/projects/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Project not found"}

    def test_malformed_id_is_404(self, test_client):
        assert test_client.get("/projects/not-a-uuid").status_code == 404

    def test_preview_before_generation_is_404(self, test_client):
        project_id = _create(test_client)
        assert test_client.get(f"/projects/{project_id}/preview").status_code == 404


# ---------------------------------------------------------------------------
# Stateless preview.
# ---------------------------------------------------------------------------


class TestStatelessPreview:
    def test_returns_base64_jpeg(self, test_client):
        payload = {"image_base64": base64.b64encode(make_image_bytes()).decode(), "style_id": "S02"}
        resp = test_client.post("/preview", json=payload)
        assert resp.status_code == 200

        preview = base64.b64decode(resp.json()["preview_base64"])
        image = Image.open(BytesIO(preview))
        assert image.format == "JPEG"
        assert image.width <= 1200

    def test_data_url_prefix_accepted(self, test_client):
        encoded = base64.b64encode(make_image_bytes()).decode()
        resp = test_client.post("/preview", json={"image_base64": f"data:image/jpeg;base64,{encoded}"})
        assert resp.status_code == 200

    def test_background_forwarded(self, test_client, vendor):
        encoded = base64.b64encode(make_image_bytes()).decode()
        test_client.post("/preview", json={"image_base64": encoded, "background": "BG03"})
        assert STATIC_BACKGROUNDS["BG03"].text in vendor.stylize_requests[0].prompt

    def test_missing_image_is_400(self, test_client):
        resp = test_client.post("/preview", json={"style_id": "S01"})
        assert resp.status_code == 400
        assert "image_base64" in resp.json()["error"]

    def test_invalid_base64_is_400(self, test_client):
        resp = test_client.post("/preview", json={"image_base64": "%%% not base64 %%%"})
        assert resp.status_code == 400

    def test_non_json_body_is_400(self, test_client):
        resp = test_client.post(
            "/preview", content=b"nope", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


class TestMain:
    """Test main() — credential check before the server starts."""

    def test_missing_token_exits_with_status_1(self, monkeypatch, test_config):
        from caricature.api import main as api_main

        started = []
        monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: started.append(args))
        monkeypatch.setattr(
            api_main, "config", test_config.model_copy(update={"replicate_api_token": None})
        )

        with pytest.raises(SystemExit) as excinfo:
            api_main.main()
        assert excinfo.value.code == 1
        assert started == []

    def test_supabase_backend_without_keys_exits(self, monkeypatch, test_config):
        from caricature.api import main as api_main

        monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: None)
        monkeypatch.setattr(
            api_main, "config", test_config.model_copy(update={"storage_backend": "supabase"})
        )

        with pytest.raises(SystemExit) as excinfo:
            api_main.main()
        assert excinfo.value.code == 1

    def test_valid_credentials_start_server(self, monkeypatch, test_config):
        from caricature.api import main as api_main

        calls = []
        monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))
        monkeypatch.setattr(api_main, "config", test_config)

        api_main.main()
        assert calls == [
            (
                "caricature.api.main:app",
                {"host": test_config.server_host, "port": test_config.server_port, "reload": False},
            )
        ]
