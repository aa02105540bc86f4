from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from dubdesk.api.deps import get_dialogues_repo, get_projects_repo
from dubdesk.api.models import DialogueListResponse, DialogueOut, DialogueUpdate, EpisodeSummary, ProjectSummary
from dubdesk.core.security import get_current_user
from dubdesk.services import dialogues as dialogue_service
from dubdesk.storage.dialogues_repo import DialoguesRepository
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.users_repo import UserRecord

router = APIRouter()


@router.get("/dialogues", response_model=DialogueListResponse)
async def list_dialogues(
  database_name: str = Query(..., alias="databaseName", min_length=1),
  collection_name: str = Query(..., alias="collectionName", min_length=1),
  current_user: UserRecord = Depends(get_current_user),  # noqa: B008
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo),  # noqa: B008
) -> DialogueListResponse:
  """Dialogues of one episode, ordered by index; only for projects the caller belongs to."""
  result = await dialogue_service.list_episode_dialogues(projects_repo, dialogues_repo, current_user, database_name=database_name, collection_name=collection_name)
  project = result["project"]
  return DialogueListResponse(
    data=[DialogueOut.from_record(item) for item in result["data"]],
    episode=EpisodeSummary(name=result["episode"].name, status=result["episode"].status),
    project=ProjectSummary(id=project.id, title=project.title, source_language=project.source_language, target_language=project.target_language),
  )


@router.get("/dialogues/{dialogue_id}", response_model=DialogueOut)
async def get_dialogue(dialogue_id: str, current_user: UserRecord = Depends(get_current_user), projects_repo: ProjectsRepository = Depends(get_projects_repo), dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo)) -> DialogueOut:  # noqa: B008
  return DialogueOut.from_record(await dialogue_service.get_dialogue_for(projects_repo, dialogues_repo, current_user, dialogue_id))


@router.patch("/dialogues/{dialogue_id}", response_model=DialogueOut)
async def update_dialogue(
  dialogue_id: str,
  payload: DialogueUpdate,
  current_user: UserRecord = Depends(get_current_user),  # noqa: B008
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo),  # noqa: B008
) -> DialogueOut:
  """Save a reviewer's changes; fields outside the caller's role are refused with 403."""
  changes = payload.model_dump(exclude_unset=True)
  updated = await dialogue_service.update_dialogue(projects_repo, dialogues_repo, current_user, dialogue_id, changes)
  return DialogueOut.from_record(updated)


@router.post("/dialogues/{dialogue_id}/remove-voice", response_model=DialogueOut)
async def remove_voice(dialogue_id: str, current_user: UserRecord = Depends(get_current_user), projects_repo: ProjectsRepository = Depends(get_projects_repo), dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo)) -> DialogueOut:  # noqa: B008
  return DialogueOut.from_record(await dialogue_service.remove_voice(projects_repo, dialogues_repo, current_user, dialogue_id))
