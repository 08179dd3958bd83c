"""
Project Repository - relational persistence for projects, users and conversations

Every method opens its own short-lived session from the injected factory so
the repository can be used from request handlers and from pipeline tasks that
outlive the request.
"""

import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.user import User
from app.models.project import Project, ProjectStatus
from app.models.conversation import ConversationMessage, ConversationSummary, ActiveProjectSummary
from app.core.exceptions import UserResolutionError, ProjectNotFoundError
from app.core.logging_config import logger


def _is_uuid(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(str(value))
        return True
    except ValueError:
        return False


class ProjectRepository:
    """CRUD and lookups on the projects and users tables"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ========== Lookups ==========

    async def get_project(self, project_id: str) -> Optional[Project]:
        if not _is_uuid(project_id):
            return None
        async with self._session_factory() as db:
            result = await db.execute(select(Project).where(Project.id == str(project_id)))
            return result.scalar_one_or_none()

    async def find_by_session(self, session_id: str) -> Optional[Project]:
        return await self._first(
            select(Project)
            .where(Project.last_session_id == session_id)
            .order_by(Project.updated_at.desc())
        )

    async def find_by_build_id(self, build_id: str) -> Optional[Project]:
        return await self._first(
            select(Project)
            .where(Project.build_id == build_id)
            .order_by(Project.updated_at.desc())
        )

    async def find_by_archive_url(self, archive_url: str) -> Optional[Project]:
        return await self._first(
            select(Project)
            .where(Project.archive_url == archive_url)
            .order_by(Project.updated_at.desc())
        )

    async def find_latest_for_user(self, user_id: str) -> Optional[Project]:
        if not _is_uuid(user_id):
            return None
        return await self._first(
            select(Project)
            .where(Project.user_id == str(user_id), Project.status != ProjectStatus.ARCHIVED.value)
            .order_by(Project.updated_at.desc())
        )

    async def find_latest(self) -> Optional[Project]:
        return await self._first(
            select(Project)
            .where(Project.status != ProjectStatus.ARCHIVED.value)
            .order_by(Project.updated_at.desc())
        )

    async def find_recent_for_user(self, user_id: str, since: datetime) -> Optional[Project]:
        if not _is_uuid(user_id):
            return None
        return await self._first(
            select(Project)
            .where(Project.user_id == str(user_id), Project.created_at >= since)
            .order_by(Project.created_at.desc())
        )

    async def _first(self, stmt) -> Optional[Project]:
        async with self._session_factory() as db:
            result = await db.execute(stmt.limit(1))
            return result.scalars().first()

    # ========== Users ==========

    async def ensure_user(self, user_id: Optional[str] = None) -> str:
        """
        Return the id of an existing user, creating one when needed.

        A usable id that is not in the table is created as-is; a missing or
        malformed id gets a fresh synthesized user.
        """
        candidate = str(user_id) if _is_uuid(user_id) else str(uuid.uuid4())

        try:
            async with self._session_factory() as db:
                existing = await db.get(User, candidate)
                if existing:
                    return str(existing.id)

                user = User(
                    id=candidate,
                    email=f"user{candidate.replace('-', '')}@buildora.dev",
                    name=f"User {candidate[:8]}",
                )
                db.add(user)
                try:
                    await db.commit()
                except IntegrityError:
                    # Created concurrently by another request
                    await db.rollback()
                    existing = await db.get(User, candidate)
                    if existing:
                        return str(existing.id)
                    raise
                logger.info(f"Created user {candidate}")
                return candidate
        except SQLAlchemyError as e:
            raise UserResolutionError(f"Could not verify or create user: {e}", user_id=user_id) from e

    # ========== Mutations ==========

    async def create_project(
        self,
        user_id: str,
        name: str,
        description: Optional[str],
        session_id: str,
        build_id: str,
        archive_url: Optional[str] = None,
        status: ProjectStatus = ProjectStatus.GENERATING,
    ) -> Project:
        async with self._session_factory() as db:
            project = Project(
                user_id=user_id,
                name=name,
                description=description,
                status=status.value,
                last_session_id=session_id,
                build_id=build_id,
                archive_url=archive_url,
                message_count=0,
            )
            db.add(project)
            await db.commit()
            await db.refresh(project)
            logger.info(f"Created project {project.id} '{name}' for user {user_id}")
            return project

    async def update_project(self, project_id: str, **fields) -> Project:
        """Apply column updates; status values may be passed as ProjectStatus"""
        if isinstance(fields.get("status"), ProjectStatus):
            fields["status"] = fields["status"].value
        async with self._session_factory() as db:
            project = await db.get(Project, str(project_id))
            if project is None:
                raise ProjectNotFoundError(str(project_id))
            for name, value in fields.items():
                setattr(project, name, value)
            project.updated_at = datetime.utcnow()
            await db.commit()
            await db.refresh(project)
            return project

    async def set_status(self, project_id: str, status: ProjectStatus) -> Project:
        return await self.update_project(project_id, status=status)

    async def finalize_project(
        self,
        project_id: str,
        session_id: str,
        build_id: str,
        archive_url: Optional[str],
        download_url: Optional[str],
        deployment_url: Optional[str],
        status: ProjectStatus = ProjectStatus.READY,
    ) -> Project:
        """Record the outcome of a pipeline run and count the exchange"""
        now = datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(Project)
                .where(Project.id == str(project_id))
                .values(
                    status=status.value,
                    archive_url=archive_url,
                    download_url=download_url,
                    deployment_url=deployment_url,
                    build_id=build_id,
                    last_session_id=session_id,
                    last_message_at=now,
                    message_count=Project.message_count + 1,
                    updated_at=now,
                )
            )
            if result.rowcount == 0:
                raise ProjectNotFoundError(str(project_id))
            await db.commit()
            project = await db.get(Project, str(project_id))
            return project

    # ========== Reporting ==========

    async def get_project_urls(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Resolve a project by id, session id or build id and return its URLs"""
        project = (
            await self.get_project(identifier)
            or await self.find_by_session(identifier)
            or await self.find_by_build_id(identifier)
        )
        if not project:
            return None
        return {
            "project_id": str(project.id),
            "name": project.name,
            "status": project.status,
            "archive_url": project.archive_url,
            "download_url": project.download_url,
            "deployment_url": project.deployment_url,
            "build_id": project.build_id,
            "last_session_id": project.last_session_id,
        }

    async def get_user_project_stats(self, user_id: str) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"user_id": user_id, "total": 0, "by_status": {}, "latest_project": None}
        if not _is_uuid(user_id):
            return stats

        async with self._session_factory() as db:
            result = await db.execute(
                select(Project.status, func.count(Project.id))
                .where(Project.user_id == str(user_id))
                .group_by(Project.status)
            )
            for status, count in result.all():
                stats["by_status"][status] = count
                stats["total"] += count

        latest = await self.find_latest_for_user(user_id)
        if latest:
            stats["latest_project"] = latest.to_dict()
        return stats

    async def archive_old_projects(self, user_id: str, keep: int = 10) -> int:
        """Mark all but the ``keep`` most recent projects of a user as archived"""
        if not _is_uuid(user_id):
            return 0
        async with self._session_factory() as db:
            result = await db.execute(
                select(Project.id)
                .where(Project.user_id == str(user_id), Project.status != ProjectStatus.ARCHIVED.value)
                .order_by(Project.updated_at.desc())
                .offset(keep)
            )
            stale_ids = [row[0] for row in result.all()]
            if not stale_ids:
                return 0
            await db.execute(
                update(Project)
                .where(Project.id.in_(stale_ids))
                .values(status=ProjectStatus.ARCHIVED.value, updated_at=datetime.utcnow())
            )
            await db.commit()
        logger.info(f"Archived {len(stale_ids)} old projects for user {user_id}")
        return len(stale_ids)

    # ========== Active project summary ==========

    async def save_project_summary(
        self,
        summary: str,
        project_id: Optional[str] = None,
        original_prompt: Optional[str] = None,
        archive_url: Optional[str] = None,
        build_id: Optional[str] = None,
    ) -> ActiveProjectSummary:
        """Store a new active summary, deactivating the previous ones"""
        async with self._session_factory() as db:
            await db.execute(
                update(ActiveProjectSummary)
                .where(ActiveProjectSummary.is_active.is_(True))
                .values(is_active=False)
            )
            record = ActiveProjectSummary(
                project_id=project_id,
                summary=summary,
                original_prompt=original_prompt,
                archive_url=archive_url,
                build_id=build_id,
                is_active=True,
            )
            db.add(record)
            await db.commit()
            await db.refresh(record)
            return record

    async def get_active_project_summary(self) -> Optional[ActiveProjectSummary]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ActiveProjectSummary)
                .where(ActiveProjectSummary.is_active.is_(True))
                .order_by(ActiveProjectSummary.created_at.desc())
                .limit(1)
            )
            record = result.scalars().first()
            if record:
                record.last_used_at = datetime.utcnow()
                await db.commit()
            return record


class ConversationRepository:
    """Message window and growing summary rows, keyed by conversation scope"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add_message(
        self,
        scope: str,
        role: str,
        content: str,
        project_id: Optional[str] = None,
        file_modifications: Optional[List[str]] = None,
        approach: Optional[str] = None,
        success: Optional[bool] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> ConversationMessage:
        async with self._session_factory() as db:
            message = ConversationMessage(
                scope=scope,
                role=role,
                content=content,
                project_id=project_id,
                file_modifications=file_modifications,
                approach=approach,
                success=success,
                extra_data=extra_data,
                created_at=datetime.utcnow(),
            )
            db.add(message)
            await db.commit()
            await db.refresh(message)
            return message

    async def list_messages(self, scope: str) -> List[ConversationMessage]:
        """Messages of a scope, oldest first"""
        async with self._session_factory() as db:
            result = await db.execute(
                select(ConversationMessage)
                .where(ConversationMessage.scope == scope)
                .order_by(ConversationMessage.created_at.asc(), ConversationMessage.id.asc())
            )
            return list(result.scalars().all())

    async def delete_messages(self, message_ids: List[str]) -> None:
        if not message_ids:
            return
        async with self._session_factory() as db:
            await db.execute(delete(ConversationMessage).where(ConversationMessage.id.in_(message_ids)))
            await db.commit()

    async def get_summary(self, scope: str) -> Optional[ConversationSummary]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ConversationSummary).where(ConversationSummary.scope == scope)
            )
            return result.scalar_one_or_none()

    async def upsert_summary(
        self,
        scope: str,
        summary: str,
        added_messages: int,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
    ) -> ConversationSummary:
        """Replace the summary text and grow its message count"""
        async with self._session_factory() as db:
            result = await db.execute(
                select(ConversationSummary).where(ConversationSummary.scope == scope)
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = ConversationSummary(
                    scope=scope,
                    summary=summary,
                    message_count=added_messages,
                    start_time=start_time,
                    end_time=end_time,
                )
                db.add(record)
            else:
                record.summary = summary
                record.message_count = (record.message_count or 0) + added_messages
                if start_time and (record.start_time is None or start_time < record.start_time):
                    record.start_time = start_time
                if end_time:
                    record.end_time = end_time
                record.updated_at = datetime.utcnow()
            await db.commit()
            await db.refresh(record)
            return record

    async def clear_scope(self, scope: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(delete(ConversationMessage).where(ConversationMessage.scope == scope))
            await db.execute(delete(ConversationSummary).where(ConversationSummary.scope == scope))
            await db.commit()
            return result.rowcount or 0
