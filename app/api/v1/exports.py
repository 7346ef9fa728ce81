import logging

from fastapi import APIRouter, Response

from app.api.deps import ComicSessionDep
from app.services import exports


router = APIRouter(tags=["exports"])
logger = logging.getLogger(__name__)


def _attachment(content: str | bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/sessions/{session_id}/exports/storyline")
async def export_storyline(session=ComicSessionDep):
    return _attachment(exports.storyline_text(session.scenes), "text/plain; charset=utf-8", "storyline.txt")


@router.get("/sessions/{session_id}/exports/characters")
async def export_character_profiles(session=ComicSessionDep):
    return _attachment(
        exports.character_profiles_markdown(session.characters),
        "text/markdown; charset=utf-8",
        "character-profiles.md",
    )


@router.get("/sessions/{session_id}/exports/script")
async def export_script(session=ComicSessionDep):
    return _attachment(exports.script_text(session.scenes), "text/plain; charset=utf-8", "comic-script.txt")


@router.get("/sessions/{session_id}/exports/comic.pdf")
async def export_comic_pdf(session=ComicSessionDep):
    content = exports.comic_pdf(session.panels)
    filename = f"{exports.safe_filename(session.title, 'comic')}.pdf"
    logger.info("comic pdf exported", extra={"session_id": str(session.id), "bytes": len(content)})
    return _attachment(content, "application/pdf", filename)
