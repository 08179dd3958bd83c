"""
Buildora - Test Configuration and Fixtures
"""
import os
import fnmatch
import time
from pathlib import Path
from typing import AsyncGenerator, Dict, Optional

import pytest
from faker import Faker
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test.db'
os.environ['ANTHROPIC_API_KEY'] = 'test-api-key'
os.environ['MODIFIER_API_URL'] = ''

from app.core.database import Base
import app.models  # noqa: F401  Register tables on Base.metadata

fake = Faker()


class FakeRedis:
    """
    In-memory stand-in for redis.asyncio.Redis covering the commands the
    session cache uses. Values are stored as strings with an absolute expiry.
    """

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.expiry: Dict[str, float] = {}
        self.ttls: Dict[str, int] = {}

    def _alive(self, key: str) -> bool:
        if key in self.expiry and self.expiry[key] <= time.time():
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key) if self._alive(key) else None

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.expiry[key] = time.time() + ttl
        self.ttls[key] = ttl
        return True

    async def set(self, key: str, value: str, nx: bool = False, ex: Optional[int] = None):
        if nx and self._alive(key):
            return None
        self.store[key] = value
        if ex:
            self.expiry[key] = time.time() + ex
            self.ttls[key] = ex
        return True

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._alive(key))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def scan(self, cursor: int = 0, match: Optional[str] = None, count: int = 100):
        keys = [key for key in list(self.store) if self._alive(key)]
        if match:
            keys = [key for key in keys if fnmatch.fnmatchcase(key, match)]
        return 0, keys

    async def info(self, section: Optional[str] = None) -> dict:
        return {"used_memory_human": "1K"}

    async def dbsize(self) -> int:
        return len(self.store)


class BrokenRedis:
    """Every command fails the way a dropped connection does"""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")
        return fail


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    from app.services.session_cache import SessionCacheService
    return SessionCacheService(fake_redis)


@pytest.fixture
def broken_cache():
    from app.services.session_cache import SessionCacheService
    return SessionCacheService(BrokenRedis())


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite database per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest.fixture
def projects(session_factory):
    from app.services.project_repository import ProjectRepository
    return ProjectRepository(session_factory)


@pytest.fixture
def conversations(session_factory):
    from app.services.project_repository import ConversationRepository
    return ConversationRepository(session_factory)


@pytest.fixture
def template_dir(tmp_path) -> Path:
    """Minimal project template"""
    template = tmp_path / "template"
    (template / "src").mkdir(parents=True)
    (template / "package.json").write_text('{"name": "template"}')
    (template / "index.html").write_text("<div id=\"root\"></div>")
    (template / "src" / "main.tsx").write_text("import App from './App'\n")
    (template / "node_modules" / "react").mkdir(parents=True)
    (template / "node_modules" / "react" / "index.js").write_text("module.exports = {}")
    return template


@pytest.fixture
def workspace(tmp_path, template_dir):
    from app.services.workspace import WorkspaceManager
    return WorkspaceManager(root=tmp_path / "builds", template_path=template_dir)


@pytest.fixture
def mock_claude():
    from tests.mocks.mock_claude import MockClaudeClient
    return MockClaudeClient()


@pytest.fixture
def storage():
    """Object storage that hands back a predictable archive URL"""
    from unittest.mock import AsyncMock

    storage = AsyncMock()
    storage.upload_source_archive.side_effect = lambda build_id, data: f"https://store/{build_id}/source.zip"
    return storage


@pytest.fixture
def builder():
    """Build platform whose builds and deployments always succeed"""
    from unittest.mock import AsyncMock
    from app.services.build_service import BuildResult, DeployResult

    builder = AsyncMock()
    builder.trigger_build.side_effect = lambda url, build_id: BuildResult(
        build_id=build_id, download_url=f"https://store/{build_id}/dist.zip"
    )
    builder.deploy.side_effect = lambda url, build_id: DeployResult(
        preview_url=f"https://{build_id[:8]}.preview.app", download_url=url
    )
    return builder


@pytest.fixture
def orchestrator_factory(projects, conversations, workspace, storage, builder):
    """Build an orchestrator around the shared doubles, overriding any collaborator"""
    from app.modules.orchestrator.pipeline_orchestrator import PipelineOrchestrator
    from app.services.conversation_context import ConversationContextAssembler
    from app.services.modification_engine import ModificationEngineClient
    from app.services.project_resolver import ProjectIdentityResolver

    def factory(cache, claude, modifier=None, build_platform=None, cleanup_timeout=60):
        context = ConversationContextAssembler(conversations, projects, cache, summarizer=claude.summarize)
        return PipelineOrchestrator(
            cache=cache,
            projects=projects,
            resolver=ProjectIdentityResolver(projects, cache),
            context=context,
            workspace=workspace,
            generator=claude,
            storage=storage,
            builder=build_platform or builder,
            modifier=modifier or ModificationEngineClient(base_url=""),
            summarizer=claude.summarize,
            cleanup_timeout=cleanup_timeout,
        )

    return factory
