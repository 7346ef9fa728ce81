from fastapi import APIRouter, HTTPException, Response

from app.api.deps import ComicSessionDep, ControllerDep, EditorDep
from app.api.v1.schemas import CharacterUpdate, SessionRead, TweakRequest
from app.services.exports import safe_filename


router = APIRouter(tags=["characters"])


@router.patch("/sessions/{session_id}/characters/{character_index}", response_model=SessionRead)
async def update_character(character_index: int, payload: CharacterUpdate, controller=EditorDep):
    if payload.description is not None:
        controller.edit_character_description(character_index, payload.description)
    if payload.tweak_input is not None:
        controller.set_character_tweak_input(character_index, payload.tweak_input)
    return controller.session


@router.post("/sessions/{session_id}/characters/{character_index}/image", response_model=SessionRead)
async def generate_character_image(character_index: int, controller=ControllerDep):
    await controller.generate_character_image(character_index)
    return controller.session


@router.post("/sessions/{session_id}/characters/{character_index}/image/update", response_model=SessionRead)
async def update_character_image(character_index: int, controller=ControllerDep):
    await controller.update_character_image(character_index)
    return controller.session


@router.post("/sessions/{session_id}/characters/{character_index}/tweak", response_model=SessionRead)
async def tweak_character(character_index: int, payload: TweakRequest, controller=ControllerDep):
    await controller.tweak_character(character_index, payload.command)
    return controller.session


@router.get("/sessions/{session_id}/characters/{character_index}/image")
async def download_character_image(character_index: int, session=ComicSessionDep):
    character = session.character_at(character_index)
    if character.image is None:
        raise HTTPException(status_code=404, detail="character has no image")
    filename = f"{safe_filename(character.name, 'character')}.png"
    return Response(
        content=character.image.data,
        media_type=character.image.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
