import uuid

from fastapi import Depends

from app.core.gemini_factory import get_gateway
from app.services.gateway import GenerationGateway
from app.services.pipeline import PipelineController
from app.services.session_state import ComicSession
from app.services.session_store import SessionStore, store


def session_store() -> SessionStore:
    return store


def generation_gateway() -> GenerationGateway:
    return get_gateway()


def comic_session(session_id: uuid.UUID, sessions: SessionStore = Depends(session_store)) -> ComicSession:
    return sessions.get(session_id)


def session_editor(session: ComicSession = Depends(comic_session)) -> PipelineController:
    """Controller for edits that never reach the provider."""
    return PipelineController(session)


def pipeline_controller(
    session: ComicSession = Depends(comic_session),
    gateway: GenerationGateway = Depends(generation_gateway),
) -> PipelineController:
    return PipelineController(session, gateway)


SessionStoreDep = Depends(session_store)
ComicSessionDep = Depends(comic_session)
EditorDep = Depends(session_editor)
ControllerDep = Depends(pipeline_controller)
