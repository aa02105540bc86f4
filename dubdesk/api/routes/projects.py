from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from dubdesk.api.deps import get_projects_repo
from dubdesk.api.models import EpisodeOut, ProjectOut, RoleName
from dubdesk.core.exceptions import NotFoundError
from dubdesk.core.security import get_current_user
from dubdesk.services import projects as project_service
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.users_repo import UserRecord

router = APIRouter()


@router.get("/projects", response_model=list[ProjectOut])
async def list_projects(role: RoleName | None = Query(default=None), current_user: UserRecord = Depends(get_current_user), projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> list[ProjectOut]:  # noqa: B008
  """Projects assigned to the caller; admins see all of them."""
  projects = await project_service.list_projects_for(projects_repo, current_user, role=role)
  return [ProjectOut.from_record(project) for project in projects]


@router.get("/projects/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, current_user: UserRecord = Depends(get_current_user), projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> ProjectOut:  # noqa: B008
  project = await project_service.get_project_for(projects_repo, current_user, project_id)
  return ProjectOut.from_record(project)


@router.get("/projects/{project_id}/episodes/{episode_name}", response_model=EpisodeOut)
async def get_project_episode(project_id: str, episode_name: str, current_user: UserRecord = Depends(get_current_user), projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> EpisodeOut:  # noqa: B008
  project = await project_service.get_project_for(projects_repo, current_user, project_id)
  episode = project.find_episode(name=episode_name)
  if episode is None:
    raise NotFoundError("Episode not found")
  return EpisodeOut.from_record(episode)
