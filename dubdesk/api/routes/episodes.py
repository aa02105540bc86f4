from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from dubdesk.api.deps import get_dialogues_repo, get_projects_repo, get_step_runner
from dubdesk.api.models import EpisodeOut, VoiceAssignmentRequest
from dubdesk.core.exceptions import NotFoundError
from dubdesk.core.json import DocumentJSONResponse
from dubdesk.core.security import get_current_user
from dubdesk.pipeline.runner import StepRunner
from dubdesk.pipeline.state import FINAL_STEP
from dubdesk.pipeline.steps import get_step
from dubdesk.services import dialogues as dialogue_service
from dubdesk.services.rbac import ALL_ROLES, ensure_can_act
from dubdesk.storage.dialogues_repo import DialoguesRepository
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.users_repo import UserRecord

router = APIRouter()


@router.get("/episodes/{episode_id}", response_model=EpisodeOut)
async def get_episode(episode_id: str, current_user: UserRecord = Depends(get_current_user), projects_repo: ProjectsRepository = Depends(get_projects_repo)) -> EpisodeOut:  # noqa: B008
  """Return one episode with its step map."""
  episode = await projects_repo.get_episode(episode_id)
  if episode is None:
    raise NotFoundError("Episode not found")
  project = await projects_repo.get_project(episode.project_id)
  if project is None:
    raise NotFoundError("Episode not found")
  ensure_can_act(current_user, project, ALL_ROLES)
  return EpisodeOut.from_record(episode)


def _step_endpoint(step_number: int):  # noqa: ANN202
  definition = get_step(step_number)

  async def trigger_step(
    episode_id: str,
    params: dict[str, Any] | None = Body(default=None),  # noqa: B008
    current_user: UserRecord = Depends(get_current_user),  # noqa: B008
    runner: StepRunner = Depends(get_step_runner),  # noqa: B008
  ) -> Any:
    result = await runner.trigger(episode_id, step_number, params, user=current_user)
    if definition.dispatch == "queued":
      return DocumentJSONResponse(status_code=status.HTTP_202_ACCEPTED, content=result)
    return result

  trigger_step.__name__ = f"trigger_step{step_number}"
  trigger_step.__doc__ = f"Start step {step_number} ({definition.name}) for an episode."
  return trigger_step


for _step_number in range(1, FINAL_STEP + 1):
  router.add_api_route(f"/episodes/{{episode_id}}/step{_step_number}", _step_endpoint(_step_number), methods=["POST"], tags=["pipeline"])


@router.get("/episodes/{episode_id}/voice-assignments")
async def get_voice_assignments(
  episode_id: str,
  current_user: UserRecord = Depends(get_current_user),  # noqa: B008
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo),  # noqa: B008
) -> dict[str, str]:
  """Character name to voice id, read from the episode's dialogues."""
  return await dialogue_service.get_voice_assignments(projects_repo, dialogues_repo, current_user, episode_id)


@router.post("/episodes/{episode_id}/voice-assignments")
async def assign_voice(
  episode_id: str,
  payload: VoiceAssignmentRequest,
  current_user: UserRecord = Depends(get_current_user),  # noqa: B008
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo),  # noqa: B008
) -> dict[str, Any]:
  matched = await dialogue_service.assign_voice(projects_repo, dialogues_repo, current_user, episode_id, character_name=payload.character_name, voice_id=payload.voice_id, dialogue_ids=payload.dialogue_ids)
  return {"success": True, "message": "Voice assignments updated successfully", "updated": matched}
