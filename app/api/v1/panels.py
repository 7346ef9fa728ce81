from fastapi import APIRouter, HTTPException, Response

from app.api.deps import ComicSessionDep, ControllerDep, EditorDep
from app.api.v1.schemas import PanelBatchRead, PanelUpdate, SessionRead, TweakRequest


router = APIRouter(tags=["panels"])


@router.patch("/sessions/{session_id}/panels/{panel_index}", response_model=SessionRead)
async def update_panel(panel_index: int, payload: PanelUpdate, controller=EditorDep):
    controller.set_panel_tweak_input(panel_index, payload.tweak_input)
    return controller.session


@router.post("/sessions/{session_id}/panels/generate-all", response_model=PanelBatchRead)
async def generate_all_panels(controller=ControllerDep):
    results = await controller.generate_all_panels()
    return PanelBatchRead(session=SessionRead.model_validate(controller.session), results=results)


@router.post("/sessions/{session_id}/panels/{panel_index}/generate", response_model=SessionRead)
async def generate_panel(panel_index: int, controller=ControllerDep):
    await controller.generate_panel(panel_index)
    return controller.session


@router.post("/sessions/{session_id}/panels/{panel_index}/update", response_model=SessionRead)
async def update_panel_from_text(panel_index: int, controller=ControllerDep):
    await controller.update_panel_from_text(panel_index)
    return controller.session


@router.post("/sessions/{session_id}/panels/{panel_index}/tweak", response_model=SessionRead)
async def tweak_panel(panel_index: int, payload: TweakRequest, controller=ControllerDep):
    await controller.tweak_panel(panel_index, payload.command)
    return controller.session


@router.get("/sessions/{session_id}/panels/{panel_index}/image")
async def download_panel_image(panel_index: int, session=ComicSessionDep):
    panel = session.panel_at(panel_index)
    if panel.final_image is None:
        raise HTTPException(status_code=404, detail="panel has no image")
    return Response(
        content=panel.final_image.data,
        media_type=panel.final_image.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{panel.id}.png"'},
    )
