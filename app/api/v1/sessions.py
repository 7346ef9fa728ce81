import uuid

from fastapi import APIRouter, Response

from app.api.deps import ComicSessionDep, ControllerDep, EditorDep, SessionStoreDep
from app.api.v1.schemas import ImageModelOption, SessionRead, SessionUpdate
from app.core.settings import IMAGE_MODEL_CHOICES


router = APIRouter(tags=["sessions"])


@router.get("/image-models", response_model=list[ImageModelOption])
async def list_image_models():
    return [ImageModelOption(id=model_id, name=name) for model_id, name in IMAGE_MODEL_CHOICES.items()]


@router.post("/sessions", response_model=SessionRead, status_code=201)
async def create_session(sessions=SessionStoreDep):
    return sessions.create()


@router.get("/sessions/{session_id}", response_model=SessionRead)
async def get_session(session=ComicSessionDep):
    return session


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: uuid.UUID, sessions=SessionStoreDep):
    sessions.delete(session_id)
    return Response(status_code=204)


@router.patch("/sessions/{session_id}", response_model=SessionRead)
async def update_session(payload: SessionUpdate, controller=EditorDep):
    controller.update_session(prompt=payload.prompt, title=payload.title, image_model=payload.image_model)
    return controller.session


@router.post("/sessions/{session_id}/reset", response_model=SessionRead)
async def reset_session(controller=EditorDep):
    controller.reset()
    return controller.session


@router.post("/sessions/{session_id}/storyline", response_model=SessionRead)
async def generate_storyline(controller=ControllerDep):
    await controller.generate_storyline()
    return controller.session


@router.post("/sessions/{session_id}/characters", response_model=SessionRead)
async def finalize_storyline(controller=ControllerDep):
    await controller.finalize_storyline()
    return controller.session


@router.post("/sessions/{session_id}/script", response_model=SessionRead)
async def generate_script(controller=ControllerDep):
    await controller.generate_script()
    return controller.session


@router.post("/sessions/{session_id}/panels", response_model=SessionRead)
async def proceed_to_panel_generation(controller=EditorDep):
    controller.proceed_to_panel_generation()
    return controller.session


@router.post("/sessions/{session_id}/comic", response_model=SessionRead)
async def proceed_to_comic(controller=EditorDep):
    controller.proceed_to_comic()
    return controller.session
