"""
Workspace cleanup guard

Armed when a run starts. Normal completion and failure call ``run_now``; if
neither happens before the timeout (a hung stage, a lost task) the timer
calls ``on_expire`` so the owner can stop the run, then removes the
workspace itself. Whichever path gets there first does the removal and the
other becomes a no-op, except that ``run_now`` after a timeout sweeps again
in case a stage that was still running recreated files.
"""

import asyncio
from typing import Callable, Optional

from app.core.config import settings
from app.core.logging_config import logger
from app.services.session_cache import SessionCacheService
from app.services.workspace import WorkspaceManager


class WorkspaceCleanup:

    def __init__(
        self,
        build_id: str,
        session_id: str,
        workspace: WorkspaceManager,
        cache: SessionCacheService,
        timeout_seconds: Optional[float] = None,
        on_expire: Optional[Callable[[], None]] = None,
    ):
        self.build_id = build_id
        self.session_id = session_id
        self.workspace = workspace
        self.cache = cache
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.WORKSPACE_CLEANUP_TIMEOUT_SECONDS
        )
        self.on_expire = on_expire
        self._timer: Optional[asyncio.Task] = None
        self._done = False
        self.expired = False
        self.reason: Optional[str] = None

    @property
    def done(self) -> bool:
        return self._done

    def arm(self) -> None:
        if self._timer is None and not self._done:
            self._timer = asyncio.create_task(self._expire())

    async def _expire(self) -> None:
        await asyncio.sleep(self.timeout_seconds)
        logger.warning(f"Cleanup timeout reached for build {self.build_id}, stopping run and removing workspace")
        self.expired = True
        if self.on_expire is not None:
            self.on_expire()
        await self._run("timeout")

    async def run_now(self, reason: str) -> bool:
        """Cancel the timer and clean up immediately; False if already cleaned"""
        if self.expired:
            await self._sweep()
            return False
        # Once the timer has started removing, let it finish instead of cancelling it mid-way
        if self._timer is not None and not self._done and self._timer is not asyncio.current_task():
            self._timer.cancel()
        return await self._run(reason)

    async def _sweep(self) -> None:
        try:
            await self.workspace.remove(self.build_id)
        except OSError as e:
            logger.error(f"Failed to remove workspace {self.build_id}: {e}")

    async def _run(self, reason: str) -> bool:
        if self._done:
            return False
        self._done = True
        self.reason = reason

        await self._sweep()

        record = await self.cache.get_session_record(self.session_id)
        if record is not None and record.workspace_path:
            await self.cache.update_session_record(self.session_id, workspace_path=None)

        logger.log_stage_event("cleanup", f"workspace removed ({reason})", build_id=self.build_id)
        return True
