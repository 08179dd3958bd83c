"""
Build Service - client for the remote build and hosting platform

The platform builds a source archive into static assets and then publishes
them. Builds are asynchronous on the platform side, so a triggered build is
polled until it finishes or BUILD_TIMEOUT elapses.
"""

import asyncio
from typing import Optional, Dict, Any

import httpx
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.exceptions import BuildError, DeployError
from app.core.logging_config import logger


class BuildResult(BaseModel):
    build_id: str
    status: str = "succeeded"
    download_url: Optional[str] = None
    logs: Optional[str] = None


class DeployResult(BaseModel):
    preview_url: str
    download_url: str


TERMINAL_BUILD_STATUSES = {"succeeded", "failed", "cancelled"}


class BuildPlatformClient:
    """Triggers remote builds and deployments over HTTP"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.BUILD_API_URL).rstrip("/")
        self.token = token if token is not None else settings.BUILD_API_TOKEN
        self._http_client = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, timeout: float, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        if self._http_client is not None:
            response = await self._http_client.request(method, url, headers=self._headers(), **kwargs)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        response.raise_for_status()
        return response.json()

    async def trigger_build(
        self,
        source_url: str,
        build_id: str,
        config: Optional[Dict[str, Any]] = None,
    ) -> BuildResult:
        """Start a build of ``source_url`` and wait for the built archive URL"""
        payload = {
            "build_id": build_id,
            "source_url": source_url,
            "resource_group": settings.BUILD_RESOURCE_GROUP,
            "container_env": settings.BUILD_CONTAINER_ENV,
            "registry": settings.BUILD_REGISTRY_NAME,
            **(config or {}),
        }

        try:
            data = await self._request("POST", "/builds", settings.BUILD_TIMEOUT, json=payload)
            result = BuildResult(**{"build_id": build_id, **data})

            loop = asyncio.get_running_loop()
            deadline = loop.time() + settings.BUILD_TIMEOUT
            while result.status not in TERMINAL_BUILD_STATUSES:
                if loop.time() >= deadline:
                    raise BuildError(f"Build timed out after {settings.BUILD_TIMEOUT}s", build_id=build_id)
                await asyncio.sleep(settings.BUILD_POLL_INTERVAL)
                data = await self._request("GET", f"/builds/{build_id}", settings.BUILD_TIMEOUT)
                result = BuildResult(**{"build_id": build_id, **data})

        except httpx.HTTPError as e:
            raise BuildError(f"Build request failed: {e}", build_id=build_id) from e
        except (ValidationError, ValueError, TypeError) as e:
            raise BuildError(f"Unexpected build response: {e}", build_id=build_id) from e

        if result.status != "succeeded" or not result.download_url:
            raise BuildError(f"Build {result.status}", build_id=build_id, logs=result.logs)

        logger.info(f"Build {build_id} succeeded: {result.download_url}")
        return result

    async def deploy(self, built_url: str, build_id: str) -> DeployResult:
        """Publish a built archive and return its preview and download URLs"""
        try:
            data = await self._request(
                "POST", "/deployments", settings.DEPLOY_TIMEOUT,
                json={"build_id": build_id, "artifact_url": built_url},
            )
            result = DeployResult(**data)
        except httpx.HTTPError as e:
            raise DeployError(f"Deploy request failed: {e}", build_id=build_id) from e
        except (ValidationError, ValueError, TypeError) as e:
            raise DeployError(f"Unexpected deploy response: {e}", build_id=build_id) from e

        logger.info(f"Deployed {build_id}: {result.preview_url}")
        return result
