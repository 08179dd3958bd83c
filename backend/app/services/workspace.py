"""
Workspace Manager - ephemeral per-build directories

Each pipeline run gets ``{WORKSPACE_ROOT}/{build_id}``, seeded either from a
previous source archive or from the blank project template. Workspaces are
removed by the orchestrator's cleanup guard once the run ends.

Usage:
    workspace = WorkspaceManager()

    path = await workspace.materialize_from_archive(build_id, archive_url)
    await workspace.write_files(path, {"src/App.tsx": content})
    archive = await workspace.create_archive(path)
    await workspace.remove(build_id)
"""

import asyncio
import io
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional, Dict, List, Iterable

import aiofiles
import httpx

from app.core.config import settings
from app.core.exceptions import WorkspaceMaterializationError
from app.core.logging_config import logger


class WorkspaceManager:
    """Creates, fills, packages and removes build workspaces"""

    def __init__(
        self,
        root: Optional[Path] = None,
        template_path: Optional[Path] = None,
        download_timeout: float = 60.0,
    ):
        self.root = Path(root) if root else settings.WORKSPACE_PATH
        self.template_path = Path(template_path) if template_path else settings.TEMPLATE_PATH
        self.download_timeout = download_timeout
        self.root.mkdir(parents=True, exist_ok=True)

    def workspace_path(self, build_id: str) -> Path:
        return self.root / build_id

    # ==================== Creation ====================

    async def create_from_template(self, build_id: str) -> Path:
        """Copy the blank project template into a fresh workspace"""
        target = self.workspace_path(build_id)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._copy_template, target)
        logger.info(f"Workspace {build_id} created from template")
        return target

    def _copy_template(self, target: Path) -> None:
        if target.exists():
            shutil.rmtree(target)
        if self.template_path.exists():
            shutil.copytree(
                self.template_path, target,
                ignore=shutil.ignore_patterns(*settings.ARCHIVE_EXCLUDED_DIRS)
            )
        else:
            logger.warning(f"Template not found at {self.template_path}, starting empty workspace")
            target.mkdir(parents=True, exist_ok=True)

    async def materialize_from_archive(self, build_id: str, archive_url: str) -> Path:
        """Download a source archive and extract it into a fresh workspace"""
        target = self.workspace_path(build_id)
        try:
            async with httpx.AsyncClient(timeout=self.download_timeout, follow_redirects=True) as client:
                response = await client.get(archive_url)
                response.raise_for_status()
                data = response.content
        except httpx.HTTPError as e:
            raise WorkspaceMaterializationError(f"Failed to download archive: {e}", archive_url=archive_url) from e

        loop = asyncio.get_running_loop()
        try:
            count = await loop.run_in_executor(None, self._extract, data, target)
        except (zipfile.BadZipFile, ValueError, OSError) as e:
            raise WorkspaceMaterializationError(f"Failed to extract archive: {e}", archive_url=archive_url) from e

        logger.info(f"Workspace {build_id} materialized from archive ({count} entries)")
        return target

    def _extract(self, data: bytes, target: Path) -> int:
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True, exist_ok=True)
        resolved_root = target.resolve()
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for member in zf.namelist():
                destination = (target / member).resolve()
                if resolved_root not in destination.parents and destination != resolved_root:
                    raise ValueError(f"Archive entry escapes workspace: {member}")
            zf.extractall(target)
            return len(zf.namelist())

    # ==================== File operations ====================

    @staticmethod
    def safe_relative_path(file_path: str) -> PurePosixPath:
        """Reject absolute paths and parent traversal in generated file names"""
        relative = PurePosixPath(file_path.replace("\\", "/").lstrip("/"))
        if not relative.parts or ".." in relative.parts:
            raise ValueError(f"Unsafe file path: {file_path}")
        return relative

    async def write_files(self, workspace: Path, files: Dict[str, str]) -> List[str]:
        """Write generated files, returning the paths actually written"""
        written = []
        for file_path, content in files.items():
            try:
                relative = self.safe_relative_path(file_path)
            except ValueError as e:
                logger.warning(f"Skipping generated file: {e}")
                continue

            full_path = Path(workspace) / relative
            full_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(full_path, 'w', encoding='utf-8') as f:
                await f.write(content)
            written.append(str(relative))

        logger.info(f"Wrote {len(written)} files to {workspace}")
        return written

    def _iter_source_files(self, workspace: Path, extensions: Iterable[str]) -> List[Path]:
        excluded = set(settings.ARCHIVE_EXCLUDED_DIRS)
        suffixes = set(extensions)
        result = []
        for path in sorted(Path(workspace).rglob('*')):
            relative = path.relative_to(workspace)
            if any(part in excluded or part.startswith('.') for part in relative.parts[:-1]):
                continue
            if path.is_file() and path.suffix in suffixes:
                result.append(path)
        return result

    async def read_source_files(self, workspace: Path, extensions: Optional[Iterable[str]] = None) -> Dict[str, str]:
        """Read source files (skipping dependency and hidden directories) as {relative path: content}"""
        extensions = extensions or settings.CACHED_FILE_EXTENSIONS
        loop = asyncio.get_running_loop()
        paths = await loop.run_in_executor(None, self._iter_source_files, Path(workspace), list(extensions))

        files = {}
        for path in paths:
            try:
                async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                    files[path.relative_to(workspace).as_posix()] = await f.read()
            except UnicodeDecodeError:
                logger.debug(f"Skipping non-text file {path}")
        return files

    # ==================== Packaging ====================

    async def create_archive(self, workspace: Path) -> bytes:
        """ZIP the workspace, leaving out dependency folders and dotfiles"""
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, self._zip, Path(workspace))
        logger.info(f"Packaged workspace {workspace} ({len(data)} bytes)")
        return data

    def _zip(self, workspace: Path) -> bytes:
        excluded = set(settings.ARCHIVE_EXCLUDED_DIRS)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zipf:
            for file_path in sorted(workspace.rglob('*')):
                relative = file_path.relative_to(workspace)
                if any(part in excluded or part.startswith('.') for part in relative.parts):
                    continue
                if file_path.is_file():
                    zipf.write(file_path, relative.as_posix())
        return buffer.getvalue()

    # ==================== Cleanup ====================

    async def remove(self, build_id: str) -> bool:
        """Delete a workspace; returns False when it was already gone"""
        target = self.workspace_path(build_id)
        if not target.exists():
            return False
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, shutil.rmtree, target, True)
        logger.info(f"Removed workspace {build_id}")
        return True
