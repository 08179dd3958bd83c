from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_project_repository
from app.services.project_repository import ProjectRepository
from app.schemas.pipeline import ProjectUrlsResponse, ProjectStatsResponse

router = APIRouter(tags=["Projects"])


@router.get("/projects/{identifier}/urls", response_model=ProjectUrlsResponse)
async def get_project_urls(
    identifier: str,
    projects: ProjectRepository = Depends(get_project_repository),
):
    """
    Archive, download and preview URLs of a project.

    ``identifier`` may be a project id, a session id or a build id.
    """
    urls = await projects.get_project_urls(identifier)
    if urls is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return urls


@router.get("/users/{user_id}/project-stats", response_model=ProjectStatsResponse)
async def get_user_project_stats(
    user_id: str,
    projects: ProjectRepository = Depends(get_project_repository),
):
    return await projects.get_user_project_stats(user_id)
