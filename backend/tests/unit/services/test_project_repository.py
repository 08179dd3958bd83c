"""
Unit Tests for the Project Repository
"""
import uuid

import pytest

from app.core.exceptions import ProjectNotFoundError
from app.models.project import ProjectStatus


async def _create(projects, user_id, session_id="session_a", name="Shop"):
    return await projects.create_project(
        user_id=user_id, name=name, description=None,
        session_id=session_id, build_id=str(uuid.uuid4()),
    )


class TestUsers:
    """Tests for user verification and creation"""

    @pytest.mark.asyncio
    async def test_missing_user_synthesized(self, projects):
        user_id = await projects.ensure_user(None)
        assert uuid.UUID(user_id)

    @pytest.mark.asyncio
    async def test_existing_user_reused(self, projects):
        user_id = await projects.ensure_user()
        assert await projects.ensure_user(user_id) == user_id

    @pytest.mark.asyncio
    async def test_unknown_valid_id_created_as_is(self, projects):
        wanted = str(uuid.uuid4())
        assert await projects.ensure_user(wanted) == wanted

    @pytest.mark.asyncio
    async def test_malformed_id_replaced(self, projects):
        user_id = await projects.ensure_user("not-a-uuid")
        assert user_id != "not-a-uuid"


class TestProjects:
    """Tests for project lookups and mutations"""

    @pytest.mark.asyncio
    async def test_lookups(self, projects):
        user_id = await projects.ensure_user()
        project = await _create(projects, user_id)

        assert (await projects.find_by_session("session_a")).id == project.id
        assert (await projects.find_by_build_id(project.build_id)).id == project.id
        assert (await projects.find_latest_for_user(user_id)).id == project.id
        assert await projects.get_project("garbage") is None

    @pytest.mark.asyncio
    async def test_update_missing_project(self, projects):
        with pytest.raises(ProjectNotFoundError):
            await projects.update_project(str(uuid.uuid4()), name="x")

    @pytest.mark.asyncio
    async def test_finalize_counts_exchange(self, projects):
        user_id = await projects.ensure_user()
        project = await _create(projects, user_id)

        for _ in range(2):
            project = await projects.finalize_project(
                str(project.id), session_id="session_b", build_id="b2",
                archive_url="https://store/source.zip", download_url=None, deployment_url=None,
                status=ProjectStatus.GENERATED,
            )

        assert project.message_count == 2
        assert project.status == ProjectStatus.GENERATED.value
        assert project.last_session_id == "session_b"
        assert project.is_fully_deployed is False

    @pytest.mark.asyncio
    async def test_project_urls_by_any_identifier(self, projects):
        user_id = await projects.ensure_user()
        project = await _create(projects, user_id, session_id="session_urls")

        by_id = await projects.get_project_urls(str(project.id))
        by_session = await projects.get_project_urls("session_urls")
        by_build = await projects.get_project_urls(project.build_id)

        assert by_id == by_session == by_build
        assert by_id["status"] == ProjectStatus.GENERATING.value
        assert await projects.get_project_urls("unknown") is None

    @pytest.mark.asyncio
    async def test_user_stats(self, projects):
        user_id = await projects.ensure_user()
        first = await _create(projects, user_id, session_id="s1")
        await _create(projects, user_id, session_id="s2")
        await projects.set_status(str(first.id), ProjectStatus.READY)

        stats = await projects.get_user_project_stats(user_id)

        assert stats["total"] == 2
        assert stats["by_status"] == {ProjectStatus.READY.value: 1, ProjectStatus.GENERATING.value: 1}
        assert stats["latest_project"]["id"] == str(first.id)

    @pytest.mark.asyncio
    async def test_archive_keeps_latest(self, projects):
        user_id = await projects.ensure_user()
        created = [await _create(projects, user_id, session_id=f"s{i}") for i in range(4)]

        archived = await projects.archive_old_projects(user_id, keep=2)

        assert archived == 2
        oldest = await projects.get_project(str(created[0].id))
        newest = await projects.get_project(str(created[-1].id))
        assert oldest.status == ProjectStatus.ARCHIVED.value
        assert newest.status == ProjectStatus.GENERATING.value


class TestActiveSummary:
    """Tests for the active project summary"""

    @pytest.mark.asyncio
    async def test_only_latest_is_active(self, projects):
        await projects.save_project_summary("first")
        await projects.save_project_summary("second", archive_url="https://store/source.zip")

        active = await projects.get_active_project_summary()
        assert active.summary == "second"
        assert active.archive_url == "https://store/source.zip"
        assert active.last_used_at is not None
