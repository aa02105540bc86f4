from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from dubdesk.api.deps import get_dialogues_repo, get_optional_storage_client, get_projects_repo, get_storage_client, get_users_repo
from dubdesk.api.models import AssignRequest, EpisodeOut, EpisodesAdd, ProgressOut, ProjectCreate, ProjectOut, ProjectUpdate, RoleName, UserCreate, UserOut, UserUpdate
from dubdesk.config import Settings, get_settings
from dubdesk.core.exceptions import NotFoundError, ValidationFailure
from dubdesk.core.security import require_roles
from dubdesk.services import projects as project_service
from dubdesk.services.rbac import ADMIN
from dubdesk.services.storage_client import StorageClient
from dubdesk.services.voiceovers import check_upload
from dubdesk.storage.dialogues_repo import DialoguesRepository
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.users_repo import UserRecord, UsersRepository
from dubdesk.utils.ids import generate_id

router = APIRouter(dependencies=[Depends(require_roles(ADMIN))])
logger = logging.getLogger(__name__)


@router.get("/projects", response_model=list[ProjectOut])
async def list_projects(projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> list[ProjectOut]:  # noqa: B008
  return [ProjectOut.from_record(project) for project in await projects_repo.list_projects()]


@router.post("/projects", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(payload: ProjectCreate, projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> ProjectOut:  # noqa: B008
  """Create a project; its dialogue namespace and episode collections derive from the title."""
  project = await project_service.create_project(
    projects_repo,
    title=payload.title,
    source_language=payload.source_language,
    target_language=payload.target_language,
    description=payload.description,
    episode_names=payload.episodes,
  )
  return ProjectOut.from_record(project)


@router.patch("/projects/{project_id}", response_model=ProjectOut)
async def update_project(project_id: str, payload: ProjectUpdate, projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> ProjectOut:  # noqa: B008
  changes = payload.model_dump(exclude_unset=True)
  if not changes:
    raise ValidationFailure("No fields to update")
  if any(changes.get(name) is None for name in ("title", "status", "source_language", "target_language") if name in changes):
    raise ValidationFailure("title, status and languages cannot be cleared")
  project = await projects_repo.update_project(project_id, **changes)
  if project is None:
    raise NotFoundError("Project not found")
  return ProjectOut.from_record(project)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, storage: StorageClient | None = Depends(get_optional_storage_client), projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> dict[str, Any]:  # noqa: B008
  await project_service.delete_project(projects_repo, storage, project_id)
  return {"success": True, "message": "Project deleted"}


@router.post("/projects/{project_id}/episodes", response_model=ProjectOut)
async def add_episodes(project_id: str, payload: EpisodesAdd, projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> ProjectOut:  # noqa: B008
  return ProjectOut.from_record(await project_service.add_episodes(projects_repo, project_id, payload.episodes))


@router.post("/projects/{project_id}/assign", response_model=ProjectOut)
async def assign_users(project_id: str, payload: AssignRequest, projects_repo: ProjectsRepository = Depends(get_projects_repo), users_repo: UsersRepository = Depends(get_users_repo)) -> ProjectOut:  # noqa: B008
  """Add users to a project, each with their own role."""
  return ProjectOut.from_record(await project_service.assign_users(projects_repo, users_repo, project_id, payload.usernames))


@router.delete("/projects/{project_id}/assign", response_model=ProjectOut)
async def unassign_users(project_id: str, payload: AssignRequest, projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> ProjectOut:  # noqa: B008
  return ProjectOut.from_record(await project_service.unassign_users(projects_repo, project_id, payload.usernames))


@router.get("/projects/{project_id}/progress", response_model=ProgressOut)
async def project_progress(project_id: str, projects_repo: ProjectsRepository = Depends(get_projects_repo), dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo)) -> ProgressOut:  # noqa: B008
  project = await project_service.require_project(projects_repo, project_id)
  progress = project_service.compute_progress(project, await dialogues_repo.list_for_project(project_id))
  return ProgressOut(
    transcribed=progress["transcribed"],
    translated=progress["translated"],
    voice_over=progress["voiceOver"],
    approved=progress["approved"],
    total=progress["total"],
    last_updated=progress["lastUpdated"],
  )


@router.get("/users", response_model=list[UserOut])
async def list_users(role: RoleName | None = Query(default=None), users_repo: UsersRepository = Depends(get_users_repo)) -> list[UserOut]:  # noqa: B008
  return [UserOut.from_record(user) for user in await users_repo.list_users(role=role)]


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, users_repo: UsersRepository = Depends(get_users_repo)) -> UserOut:  # noqa: B008
  record = UserRecord(id=generate_id(), username=payload.username.strip(), role=payload.role, email=payload.email, firebase_uid=payload.firebase_uid)
  return UserOut.from_record(await users_repo.create_user(record))


@router.patch("/users/{user_id}", response_model=UserOut)
async def update_user(user_id: str, payload: UserUpdate, users_repo: UsersRepository = Depends(get_users_repo)) -> UserOut:  # noqa: B008
  """Change a user's role or active flag."""
  changes = payload.model_dump(exclude_unset=True)
  if not changes:
    raise ValidationFailure("No fields to update")
  if any(name in changes and changes[name] is None for name in ("role", "is_active")):
    raise ValidationFailure("role and isActive cannot be cleared")
  user = await users_repo.update_user(user_id, **changes)
  if user is None:
    raise NotFoundError("User not found")
  logger.info("User %s updated: %s", user_id, sorted(changes))
  return UserOut.from_record(user)


@router.post("/upload", response_model=EpisodeOut)
async def upload_episode_video(
  file: UploadFile = File(...),  # noqa: B008
  project_id: str = Form(..., alias="projectId"),
  episode_name: str = Form(..., alias="episodeName"),
  storage: StorageClient = Depends(get_storage_client),  # noqa: B008
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> EpisodeOut:
  """Store an episode's source video at `projects/{projectId}/{episodeName}/{filename}`."""
  # At most limit + 1 bytes are read; anything longer is rejected.
  data = await file.read(settings.max_upload_bytes + 1)
  check_upload(data, max_bytes=settings.max_upload_bytes, label="file")
  episode = await project_service.store_episode_video(projects_repo, storage, project_id=project_id, episode_name=episode_name, filename=file.filename or "", data=data, content_type=file.content_type)
  return EpisodeOut.from_record(episode)
