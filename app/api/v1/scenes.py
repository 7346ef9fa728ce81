from fastapi import APIRouter

from app.api.deps import EditorDep
from app.api.v1.schemas import DialogueUpdate, SceneUpdate, SessionRead


router = APIRouter(tags=["scenes"])


@router.patch("/sessions/{session_id}/scenes/{scene_index}", response_model=SessionRead)
async def update_scene(scene_index: int, payload: SceneUpdate, controller=EditorDep):
    controller.edit_scene(scene_index, description=payload.description, narration=payload.narration)
    return controller.session


@router.patch(
    "/sessions/{session_id}/scenes/{scene_index}/dialogues/{dialogue_index}",
    response_model=SessionRead,
)
async def update_dialogue(scene_index: int, dialogue_index: int, payload: DialogueUpdate, controller=EditorDep):
    controller.edit_dialogue_line(scene_index, dialogue_index, payload.line)
    return controller.session
