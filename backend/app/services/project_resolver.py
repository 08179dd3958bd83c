"""
Project Identity Resolver

Maps (session id, build id, request context) onto exactly one project record,
creating it only when no existing project can be matched. Strategies run in a
fixed order and the first hit wins:

1. explicit project id
2. modification requests: session -> user's latest -> global latest -> build id
3. duplicate detection: session -> build id -> archive URL -> same user within
   the recent window
4. create (user ensured first)

A project that is already fully deployed and was touched within the replay
window is returned with ``duplicate=True`` so the caller can skip the work.
"""

import asyncio
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Callable, Awaitable, List, Tuple, Any

from app.core.config import settings
from app.core.exceptions import IdentityAmbiguityError
from app.core.logging_config import logger
from app.models.project import Project, ProjectStatus
from app.services.project_repository import ProjectRepository
from app.services.session_cache import SessionCacheService


NAME_STOPWORDS = {"create", "build", "make", "generate", "website", "app", "application"}


def generate_project_name(prompt: Optional[str], build_id: str) -> str:
    """Title-cased first three meaningful words of the prompt"""
    words = re.sub(r"[^a-z0-9\s]", "", (prompt or "").lower()).split()
    keywords = [w for w in words if len(w) > 2 and w not in NAME_STOPWORDS][:3]
    if not keywords:
        return f"Project {build_id[:8]}"
    return " ".join(w.capitalize() for w in keywords)


def generate_project_description(prompt: Optional[str]) -> str:
    if not prompt or not prompt.strip():
        return "Auto-generated project"
    prompt = prompt.strip()
    if len(prompt) > 200:
        return prompt[:197] + "..."
    return prompt


class ResolutionAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass
class ResolutionContext:
    """What the caller knows about the project it is working on"""
    project_id: Optional[str] = None
    user_id: Optional[str] = None
    is_modification: bool = False
    prompt: Optional[str] = None
    archive_url: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ResolutionResult:
    project_id: str
    action: ResolutionAction
    duplicate: bool = False
    project: Optional[Project] = None
    strategy: Optional[str] = None


Lookup = Tuple[str, Callable[..., Awaitable[Optional[Project]]], Tuple[Any, ...]]


class ProjectIdentityResolver:
    """Finds or creates the project a pipeline run belongs to"""

    CLAIM_KEY = "project_claim"
    CLAIM_POLL_INTERVAL = 0.1

    def __init__(self, repository: ProjectRepository, cache: SessionCacheService):
        self.repository = repository
        self.cache = cache

    async def resolve(
        self,
        session_id: str,
        build_id: str,
        context: Optional[ResolutionContext] = None,
    ) -> ResolutionResult:
        context = context or ResolutionContext()

        for strategy, lookup, args in self._strategies(session_id, build_id, context):
            if any(arg is None for arg in args):
                continue
            project = await self._lookup(strategy, lookup, *args)
            if project:
                return await self._matched(project, session_id, strategy)

        return await self._create(session_id, build_id, context)

    def _strategies(self, session_id: str, build_id: str, context: ResolutionContext) -> List[Lookup]:
        repo = self.repository
        strategies: List[Lookup] = [("explicit_project_id", repo.get_project, (context.project_id,))]

        if context.is_modification:
            strategies += [
                ("session", repo.find_by_session, (session_id,)),
                ("user_latest", repo.find_latest_for_user, (context.user_id,)),
                ("global_latest", repo.find_latest, ()),
                ("build_id_as_session", repo.find_by_build_id, (session_id,)),
            ]

        recent_since = datetime.utcnow() - timedelta(seconds=settings.RESOLVER_RECENT_WINDOW_SECONDS)
        if not context.is_modification:
            # Modifications already looked the session up
            strategies.append(("duplicate_session", repo.find_by_session, (session_id,)))
        strategies += [
            ("duplicate_build_id", repo.find_by_build_id, (build_id,)),
            ("duplicate_archive_url", repo.find_by_archive_url, (context.archive_url,)),
            ("duplicate_recent_user", repo.find_recent_for_user, (context.user_id, recent_since)),
        ]
        return strategies

    async def _lookup(self, strategy: str, lookup, *args) -> Optional[Project]:
        try:
            return await lookup(*args)
        except Exception as e:
            error = IdentityAmbiguityError(strategy, str(e))
            logger.warning(f"Project lookup failed, trying next strategy: {error.message}",
                           extra={"strategy": strategy})
            return None

    def _is_replay(self, project: Project) -> bool:
        if not project.is_fully_deployed or project.updated_at is None:
            return False
        age = (datetime.utcnow() - project.updated_at).total_seconds()
        return age < settings.RESOLVER_REPLAY_WINDOW_SECONDS

    async def _matched(self, project: Project, session_id: str, strategy: str) -> ResolutionResult:
        if self._is_replay(project):
            logger.info(f"Duplicate request for recently completed project {project.id} ({strategy})")
            return ResolutionResult(
                project_id=str(project.id),
                action=ResolutionAction.UPDATED,
                duplicate=True,
                project=project,
                strategy=strategy,
            )

        project = await self.repository.update_project(
            str(project.id),
            status=ProjectStatus.GENERATING,
            last_session_id=session_id,
        )
        logger.info(f"Resolved project {project.id} via {strategy}")
        return ResolutionResult(
            project_id=str(project.id),
            action=ResolutionAction.UPDATED,
            project=project,
            strategy=strategy,
        )

    async def _create(self, session_id: str, build_id: str, context: ResolutionContext) -> ResolutionResult:
        token = uuid.uuid4().hex
        claimed = await self.cache.claim(session_id, self.CLAIM_KEY, token, settings.RESOLVER_CLAIM_TTL_SECONDS)

        if not claimed:
            # Another request for this session is creating the project; adopt it
            project = await self._wait_for_winner(session_id)
            if project:
                return await self._matched(project, session_id, "claim_winner")
            logger.warning(f"Creation claim for session {session_id} held but no project appeared, creating anyway")

        try:
            user_id = await self.repository.ensure_user(context.user_id)
            project = await self.repository.create_project(
                user_id=user_id,
                name=context.name or generate_project_name(context.prompt, build_id),
                description=context.description or generate_project_description(context.prompt),
                session_id=session_id,
                build_id=build_id,
                archive_url=context.archive_url,
            )
        finally:
            if claimed:
                await self.cache.release_claim(session_id, self.CLAIM_KEY, token)

        return ResolutionResult(
            project_id=str(project.id),
            action=ResolutionAction.CREATED,
            project=project,
            strategy="created",
        )

    async def _wait_for_winner(self, session_id: str) -> Optional[Project]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.RESOLVER_CLAIM_WAIT_SECONDS
        while loop.time() < deadline:
            project = await self._lookup("claim_winner", self.repository.find_by_session, session_id)
            if project:
                return project
            await asyncio.sleep(self.CLAIM_POLL_INTERVAL)
        return None
