"""
Unit Tests for Storage, Build Platform and Modification Engine clients
"""
import json
from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from app.core.config import settings
from app.core.exceptions import BuildError, DeployError, ModificationError, StorageError
from app.services.build_service import BuildPlatformClient
from app.services.modification_engine import ModificationEngineClient
from app.services.storage_service import ObjectStorageService


def _client_error(code="500"):
    return ClientError({"Error": {"Code": code, "Message": "failure"}}, "PutObject")


def _http(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestObjectStorage:
    """Tests for archive uploads"""

    @pytest.mark.asyncio
    async def test_upload_source_archive(self, monkeypatch):
        monkeypatch.setattr(settings, "STORAGE_PUBLIC_BASE_URL", "https://cdn.example.com")
        client = MagicMock()
        storage = ObjectStorageService(client=client)

        url = await storage.upload_source_archive("build-1", b"PK")

        assert url == f"https://cdn.example.com/{settings.SOURCE_ARCHIVE_CONTAINER}/build-1/source.zip"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Key"] == "build-1/source.zip"
        assert kwargs["ContentType"] == "application/zip"

    @pytest.mark.asyncio
    async def test_missing_bucket_created_once(self):
        client = MagicMock()
        client.head_bucket.side_effect = _client_error("404")
        storage = ObjectStorageService(client=client)

        await storage.upload("bucket", "a.zip", b"1")
        await storage.upload("bucket", "b.zip", b"2")

        client.create_bucket.assert_called_once()
        assert client.head_bucket.call_count == 1

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        client = MagicMock()
        client.put_object.side_effect = [_client_error(), {}]
        storage = ObjectStorageService(client=client, max_retries=2)

        await storage.upload("bucket", "a.zip", b"1")
        assert client.put_object.call_count == 2

    @pytest.mark.asyncio
    async def test_all_attempts_fail(self):
        client = MagicMock()
        client.put_object.side_effect = _client_error()
        storage = ObjectStorageService(client=client, max_retries=1)

        with pytest.raises(StorageError) as exc_info:
            await storage.upload("bucket", "a.zip", b"1")
        assert exc_info.value.details["key"] == "bucket/a.zip"


class TestBuildPlatform:
    """Tests for build triggering and deployment"""

    @pytest.mark.asyncio
    async def test_build_polled_until_finished(self, monkeypatch):
        monkeypatch.setattr(settings, "BUILD_POLL_INTERVAL", 0)
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.method == "POST":
                assert json.loads(request.content)["source_url"] == "https://store/source.zip"
                return httpx.Response(202, json={"status": "running"})
            return httpx.Response(200, json={"status": "succeeded", "download_url": "https://store/dist.zip"})

        builder = BuildPlatformClient(base_url="https://builds.test", token="t", http_client=_http(handler))
        result = await builder.trigger_build("https://store/source.zip", "build-1")

        assert result.download_url == "https://store/dist.zip"
        assert seen == [("POST", "/builds"), ("GET", "/builds/build-1")]

    @pytest.mark.asyncio
    async def test_failed_build_carries_logs(self):
        def handler(request):
            return httpx.Response(200, json={"status": "failed", "logs": "npm ERR! missing script"})

        builder = BuildPlatformClient(base_url="https://builds.test", http_client=_http(handler))
        with pytest.raises(BuildError) as exc_info:
            await builder.trigger_build("https://store/source.zip", "build-1")

        assert exc_info.value.code == "BUILD_FAILED"
        assert "npm ERR!" in exc_info.value.details["logs"]

    @pytest.mark.asyncio
    async def test_platform_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        builder = BuildPlatformClient(base_url="https://builds.test", http_client=_http(handler))
        with pytest.raises(BuildError):
            await builder.trigger_build("https://store/source.zip", "build-1")

    @pytest.mark.asyncio
    async def test_deploy(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer t"
            return httpx.Response(200, json={
                "preview_url": "https://build-1.example.app",
                "download_url": "https://store/dist.zip",
            })

        builder = BuildPlatformClient(base_url="https://builds.test", token="t", http_client=_http(handler))
        result = await builder.deploy("https://store/dist.zip", "build-1")
        assert result.preview_url == "https://build-1.example.app"

    @pytest.mark.asyncio
    async def test_deploy_bad_response(self):
        builder = BuildPlatformClient(
            base_url="https://builds.test",
            http_client=_http(lambda request: httpx.Response(200, json={"unexpected": True})),
        )
        with pytest.raises(DeployError):
            await builder.deploy("https://store/dist.zip", "build-1")

    @pytest.mark.asyncio
    async def test_html_build_response_is_build_error(self):
        """A proxy error page instead of JSON still surfaces as a build failure"""
        builder = BuildPlatformClient(
            base_url="https://builds.test",
            http_client=_http(lambda request: httpx.Response(200, text="<html>Bad Gateway</html>")),
        )
        with pytest.raises(BuildError) as exc_info:
            await builder.trigger_build("https://store/source.zip", "build-1")

        assert exc_info.value.code == "BUILD_FAILED"

    @pytest.mark.asyncio
    async def test_html_deploy_response_is_deploy_error(self):
        builder = BuildPlatformClient(
            base_url="https://builds.test",
            http_client=_http(lambda request: httpx.Response(200, text="<html>Bad Gateway</html>")),
        )
        with pytest.raises(DeployError):
            await builder.deploy("https://store/dist.zip", "build-1")


class TestModificationEngine:
    """Tests for the AST modification engine client"""

    def test_unconfigured(self):
        assert ModificationEngineClient(base_url="").is_configured is False

    @pytest.mark.asyncio
    async def test_modify(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["files"] == {"src/App.tsx": "old"}
            return httpx.Response(200, json={
                "success": True,
                "approach": "COMPONENT_ADDITION",
                "added_files": ["src/Footer.tsx"],
                "files": {"src/App.tsx": "new", "src/Footer.tsx": "footer"},
            })

        engine = ModificationEngineClient(base_url="https://modifier.test", http_client=_http(handler))
        result = await engine.modify("Add a footer", {"src/App.tsx": "old"}, "session_1")

        assert result.approach == "COMPONENT_ADDITION"
        assert result.modified_files == ["src/App.tsx"]
        assert result.added_files == ["src/Footer.tsx"]

    @pytest.mark.asyncio
    async def test_reported_failure(self):
        engine = ModificationEngineClient(
            base_url="https://modifier.test",
            http_client=_http(lambda request: httpx.Response(200, json={
                "success": False, "approach": "TARGETED_NODES", "error": "No matching node",
            })),
        )
        with pytest.raises(ModificationError) as exc_info:
            await engine.modify("Rename the button", {}, "session_1")

        assert exc_info.value.message == "No matching node"
        assert exc_info.value.details["approach"] == "TARGETED_NODES"
