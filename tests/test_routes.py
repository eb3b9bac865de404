"""
Tests for the HTTP surface (multi-angle routes, tool routes, health) through
httpx.ASGITransport. Every response is HTTP 200 with the canonical envelope.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from app.config import Settings
from app.main import create_app


@pytest.fixture
def app(orchestrator, tmp_path):
    return create_app(Settings(data_dir=str(tmp_path), log_file=""), orchestrator=orchestrator)


@pytest.fixture
async def http(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


def _ok(resp):
    assert resp.status_code == 200
    env = resp.json()
    assert env["ok"] is True, env
    assert env["schema_version"] == 1
    return env["result"]


def _err(resp):
    assert resp.status_code == 200
    env = resp.json()
    assert env["ok"] is False and env["result"] is None
    return env["error"]


class TestCatalogRoutes:
    @pytest.mark.asyncio
    async def test_config(self, http):
        result = _ok(await http.get("/api/multiangle/config"))
        assert result["loraInfo"]["totalPoses"] == 96
        assert len(result["presets"]) == 7
        assert [a["name"] for a in result["camera"]["distance"]] == ["close", "medium", "wide"]

    @pytest.mark.asyncio
    async def test_preset_detail_includes_prompts(self, http):
        result = _ok(await http.get("/api/multiangle/presets/character-ortho"))
        assert result["angleCount"] == 3
        assert result["angles"][1] == {
            "azimuth": "right",
            "elevation": "eye",
            "distance": "medium",
            "prompt": "<sks> right side view eye-level shot medium shot",
        }

    @pytest.mark.asyncio
    async def test_unknown_preset(self, http):
        err = _err(await http.get("/api/multiangle/presets/nope"))
        assert (err["code"], err["status"]) == ("unknown_preset", 400)

    @pytest.mark.asyncio
    async def test_prompt_preview_defaults(self, http):
        result = _ok(await http.post("/api/multiangle/prompt", json={"azimuth": "back"}))
        assert result["prompt"] == "<sks> back view eye-level shot medium shot"
        err = _err(await http.post("/api/multiangle/prompt", json={"azimuth": "sideways"}))
        assert err["code"] == "invalid_pose"


class TestJobRoutes:
    @pytest.mark.asyncio
    async def test_generate_poll_delete(self, http, orchestrator, comfy):
        result = _ok(await http.post("/api/multiangle/generate", json={"imageId": "hero-01", "presetId": "character-ortho"}))
        job_id = result["jobId"]
        assert len(result["job"]["tasks"]) == 3
        await orchestrator.join(job_id)

        snap = _ok(await http.get(f"/api/multiangle/jobs/{job_id}"))
        assert snap["state"] == "processing"
        comfy.finish_all()
        snap = _ok(await http.get(f"/api/multiangle/jobs/{job_id}"))
        assert snap["state"] == "completed"
        assert all(t["artifactRef"].startswith("/data/multiangle/angle-") for t in snap["tasks"])

        listing = _ok(await http.get("/api/multiangle/jobs", params={"status": "completed"}))
        assert listing["total"] == 1
        assert listing["jobs"][0]["readyCount"] == 3 and listing["jobs"][0]["progress"] == 1.0

        assert _ok(await http.delete(f"/api/multiangle/jobs/{job_id}")) == {"deleted": job_id}
        err = _err(await http.get(f"/api/multiangle/jobs/{job_id}"))
        assert (err["code"], err["status"]) == ("job_not_found", 404)

    @pytest.mark.asyncio
    async def test_generate_validation(self, http, orchestrator):
        err = _err(await http.post("/api/multiangle/generate", json={"presetId": "product-basic"}))
        assert err["code"] == "validation_failed"
        err = _err(await http.post("/api/multiangle/generate", json={"imageId": "x", "options": {"strength": 3, "cfg": 99}}))
        assert err["code"] == "invalid_options"
        assert [f["field"] for f in err["details"]["fields"]] == ["strength", "cfg"]
        err = _err(await http.post("/api/multiangle/generate", json={"imageId": "x", "angles": "front"}))
        assert err["code"] == "invalid_pose"
        assert await orchestrator.store.list_all() == []

    @pytest.mark.asyncio
    async def test_bad_status_filter(self, http):
        err = _err(await http.get("/api/multiangle/jobs", params={"status": "done"}))
        assert err["code"] == "validation_failed"

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_internal_error(self, http, orchestrator, monkeypatch):
        async def broken(job_id):
            raise RuntimeError("store offline")

        monkeypatch.setattr(orchestrator, "get_job_status", broken)
        resp = await http.get("/api/multiangle/jobs/any", headers={"X-Request-ID": "rid-1"})
        err = _err(resp)
        assert (err["code"], err["status"]) == ("internal_error", 500)
        assert resp.headers["X-Request-ID"] == "rid-1"
        assert resp.json()["request_id"] == "rid-1"


class TestToolRoutes:
    @pytest.mark.asyncio
    async def test_list_and_describe(self, http):
        tools = _ok(await http.get("/tool.list"))["tools"]
        assert {t["name"] for t in tools} == {"multiangle.presets", "multiangle.generate", "multiangle.status", "multiangle.delete"}
        resp = await http.get("/tool.describe", params={"name": "multiangle.generate"})
        result = _ok(resp)
        assert "image_id" in result["schema"]["properties"]
        assert resp.headers["ETag"] == f'W/"{result["schema_hash"]}"'
        err = _err(await http.post("/tool.describe", json={"name": "image.dispatch"}))
        assert (err["code"], err["status"]) == ("tool_not_found", 404)

    @pytest.mark.asyncio
    async def test_run_generate_and_status(self, http, orchestrator):
        result = _ok(await http.post("/tool.run", json={"name": "multiangle.generate", "args": {"image_id": "hero-01", "preset_id": "character-ortho"}}))
        assert result["task_count"] == 3
        await orchestrator.join(result["job_id"])
        status = _ok(await http.post("/tool.run", json={"name": "multiangle.status", "args": {"job_id": result["job_id"]}}))
        assert [t["state"] for t in status["tasks"]] == ["submitted"] * 3

    @pytest.mark.asyncio
    async def test_run_errors(self, http):
        err = _err(await http.post("/tool.run", json={"name": "multiangle.status", "args": {}}))
        assert err["code"] == "validation_failed"
        err = _err(await http.post("/tool.run", json={"name": "multiangle.delete", "args": {"job_id": "ghost"}}))
        assert err["code"] == "job_not_found"
        err = _err(await http.post("/tool.run", json={"name": "film2.run", "args": {}}))
        assert err["code"] == "tool_not_found"


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthz(self, http, comfy):
        result = _ok(await http.get("/healthz"))
        assert result["backend"] == {"url": comfy.base_url, "reachable": True}

    @pytest.mark.asyncio
    async def test_healthz_reports_unreachable_backend(self, http, comfy, monkeypatch):
        probe = AsyncMock(return_value=False)
        monkeypatch.setattr(comfy, "probe", probe)
        result = _ok(await http.get("/healthz"))
        assert result["ok"] is True
        assert result["backend"]["reachable"] is False
        probe.assert_awaited_once()
