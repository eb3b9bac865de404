"""
Tests for the ComfyUI protocol client against an httpx.MockTransport.
"""

import json

import httpx
import pytest

from app.comfy.assets import ArtifactDescriptor
from app.comfy.client_aio import ComfyClient
from app.ops.errors import FetchFailed, PollFailed, SubmitFailed, UploadFailed


def _client(handler):
    return ComfyClient("http://comfy.test", timeout_s=5, client_id="test-client", transport=httpx.MockTransport(handler))


class TestProbe:
    @pytest.mark.asyncio
    async def test_ok(self):
        c = _client(lambda req: httpx.Response(200, json={"system": {}}))
        assert await c.probe() is True
        await c.aclose()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(req):
            raise httpx.ConnectError("refused", request=req)

        c = _client(handler)
        assert await c.probe() is False
        await c.aclose()

    @pytest.mark.asyncio
    async def test_server_error(self):
        c = _client(lambda req: httpx.Response(503))
        assert await c.probe() is False
        await c.aclose()


class TestUpload:
    @pytest.mark.asyncio
    async def test_multipart_upload_returns_subfolder_ref(self):
        seen = {}

        def handler(req):
            seen["path"] = req.url.path
            seen["body"] = req.content
            return httpx.Response(200, json={"name": "hero.png", "subfolder": "multiangle", "type": "input"})

        c = _client(handler)
        assert await c.upload_asset(b"PNGDATA", "hero.png") == "multiangle/hero.png"
        assert seen["path"] == "/upload/image"
        assert b'name="subfolder"' in seen["body"] and b"multiangle" in seen["body"]
        assert b'name="overwrite"' in seen["body"] and b"PNGDATA" in seen["body"]
        await c.aclose()

    @pytest.mark.asyncio
    async def test_rejected_upload(self):
        c = _client(lambda req: httpx.Response(500, text="disk full"))
        with pytest.raises(UploadFailed):
            await c.upload_asset(b"x", "a.png")
        await c.aclose()


class TestSubmit:
    @pytest.mark.asyncio
    async def test_posts_prompt_with_client_id(self):
        seen = {}

        def handler(req):
            seen.update(json.loads(req.content))
            return httpx.Response(200, json={"prompt_id": "abc", "number": 1, "node_errors": {}})

        c = _client(handler)
        assert await c.submit({"prompt": {"1": {"class_type": "X", "inputs": {}}}}) == "abc"
        assert seen == {"prompt": {"1": {"class_type": "X", "inputs": {}}}, "client_id": "test-client"}
        await c.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(400, json={"error": {"type": "prompt_outputs_failed_validation"}, "node_errors": {"7": {}}}),
            httpx.Response(200, json={"node_errors": {"3": {"errors": ["missing image"]}}, "prompt_id": "x"}),
            httpx.Response(200, json={"number": 3}),
            httpx.Response(200, text="not json"),
        ],
    )
    async def test_rejections(self, response):
        c = _client(lambda req: response)
        with pytest.raises(SubmitFailed):
            await c.submit({"prompt": {}})
        await c.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(req):
            raise httpx.ReadTimeout("slow", request=req)

        c = _client(handler)
        with pytest.raises(SubmitFailed):
            await c.submit({"prompt": {}})
        await c.aclose()


def _history(pid, status, outputs=None, messages=None):
    return {pid: {"status": dict(status, messages=messages or []), "outputs": outputs or {}}}


class TestPollStatus:
    @pytest.mark.asyncio
    async def test_queued_and_running(self):
        queue = {"queue_running": [[1, "p-run", {}, {}, []]], "queue_pending": [[2, "p-wait", {}, {}, []]]}

        def handler(req):
            if req.url.path.startswith("/history/"):
                return httpx.Response(200, json={})
            return httpx.Response(200, json=queue)

        c = _client(handler)
        assert (await c.poll_status("p-run")).state == "running"
        assert (await c.poll_status("p-wait")).state == "pending"
        assert (await c.poll_status("p-unknown")).state == "pending"
        await c.aclose()

    @pytest.mark.asyncio
    async def test_succeeded(self):
        outputs = {"9": {"images": [{"filename": "multiangle_00001_.png", "subfolder": "", "type": "output"}]}}
        body = _history("p1", {"status_str": "success", "completed": True}, outputs)
        c = _client(lambda req: httpx.Response(200, json=body))
        result = await c.poll_status("p1")
        assert result.state == "succeeded"
        assert result.artifact == ArtifactDescriptor("multiangle_00001_.png", "", "output")
        await c.aclose()

    @pytest.mark.asyncio
    async def test_backend_error_carries_exception_message(self):
        msgs = [["execution_start", {}], ["execution_error", {"node_type": "KSampler", "exception_message": "CUDA out of memory\n"}]]
        body = _history("p1", {"status_str": "error", "completed": False}, messages=msgs)
        c = _client(lambda req: httpx.Response(200, json=body))
        result = await c.poll_status("p1")
        assert (result.state, result.message) == ("failed", "KSampler: CUDA out of memory")
        await c.aclose()

    @pytest.mark.asyncio
    async def test_completed_without_output_is_failure(self):
        body = _history("p1", {"status_str": "success", "completed": True})
        c = _client(lambda req: httpx.Response(200, json=body))
        assert (await c.poll_status("p1")).state == "failed"
        await c.aclose()

    @pytest.mark.asyncio
    async def test_non_mapping_status_is_poll_failure(self):
        c = _client(lambda req: httpx.Response(200, json={"prompt-1": {"status": "running", "outputs": {}}}))
        with pytest.raises(PollFailed):
            await c.poll_status("prompt-1")
        await c.aclose()

    @pytest.mark.asyncio
    async def test_non_mapping_queue_is_poll_failure(self):
        def handler(req):
            if req.url.path.startswith("/history/"):
                return httpx.Response(200, json={})
            return httpx.Response(200, json=["not", "a", "queue"])

        c = _client(handler)
        with pytest.raises(PollFailed):
            await c.poll_status("p1")
        await c.aclose()

    @pytest.mark.asyncio
    async def test_transport_and_protocol_errors(self):
        c = _client(lambda req: httpx.Response(500))
        with pytest.raises(PollFailed):
            await c.poll_status("p1")
        await c.aclose()

        def handler(req):
            raise httpx.ConnectError("down", request=req)

        c = _client(handler)
        with pytest.raises(PollFailed):
            await c.poll_status("p1")
        await c.aclose()


class TestFetchArtifact:
    @pytest.mark.asyncio
    async def test_view_query(self):
        seen = {}

        def handler(req):
            seen.update(dict(req.url.params))
            seen["path"] = req.url.path
            return httpx.Response(200, content=b"IMG")

        c = _client(handler)
        assert await c.fetch_artifact(ArtifactDescriptor("a.png", "sub", "output")) == b"IMG"
        assert seen == {"path": "/view", "filename": "a.png", "subfolder": "sub", "type": "output"}
        await c.aclose()

    @pytest.mark.asyncio
    async def test_missing_file(self):
        c = _client(lambda req: httpx.Response(404))
        with pytest.raises(FetchFailed):
            await c.fetch_artifact(ArtifactDescriptor("gone.png"))
        await c.aclose()
