"""Download serializers: plain-text/markdown stage exports and the comic PDF."""

from __future__ import annotations

import io
import logging
import re
from typing import Iterable

from fpdf import FPDF
from PIL import Image, UnidentifiedImageError

from app.core.exceptions import ValidationError
from app.services.session_state import Character, Panel, Scene

logger = logging.getLogger(__name__)

PAGE_MARGIN_PT = 40
PANEL_ASPECT = 4 / 3


def safe_filename(name: str, fallback: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9]", "_", name or "")
    return cleaned or fallback


def storyline_text(scenes: Iterable[Scene]) -> str:
    return "".join(
        f"Scene: {scene.title}\n-----------------\n{scene.description}\n\n" for scene in scenes
    )


def character_profiles_markdown(characters: Iterable[Character]) -> str:
    return "".join(
        f"# {character.name}\n\n## Description\n\n{character.description}\n\n---\n\n"
        for character in characters
    )


def script_text(scenes: Iterable[Scene]) -> str:
    parts: list[str] = []
    for scene in scenes:
        dialogues = "\n".join(f"    {d.character_name}: {d.line}" for d in scene.dialogues)
        parts.append(
            f"## Scene: {scene.title}\n\n"
            f"**Narration:**\n{scene.narration or 'N/A'}\n\n"
            f"**Dialogue:**\n{dialogues or 'No dialogue.'}\n\n"
            "-----------------\n\n"
        )
    return "".join(parts)


def comic_pdf(panels: Iterable[Panel]) -> bytes:
    """One A4 page per panel image, centred at a 3:4 portrait ratio.

    Panels without an image, or whose image cannot be decoded, are skipped.
    """
    pdf = FPDF(orientation="P", unit="pt", format="A4")
    pdf.set_auto_page_break(auto=False)
    page_w, page_h = pdf.w, pdf.h
    img_w = page_w - PAGE_MARGIN_PT * 2
    img_h = img_w * PANEL_ASPECT
    y = (page_h - img_h) / 2

    pages = 0
    for panel in panels:
        if panel.final_image is None:
            continue
        try:
            image = Image.open(io.BytesIO(panel.final_image.data))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            logger.error("Failed to load image for panel %s: %s", panel.id, exc)
            continue
        pdf.add_page()
        pdf.image(image.convert("RGB"), x=PAGE_MARGIN_PT, y=y, w=img_w, h=img_h)
        pages += 1

    if pages == 0:
        raise ValidationError("There are no panel images to export yet.")
    return bytes(pdf.output())
