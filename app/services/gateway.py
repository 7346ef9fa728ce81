"""
Generation Gateway: typed capability boundary over the Gemini transport.

Each operation renders its prompt, makes its provider call(s) and validates
the shape of the result. Anything that goes wrong surfaces as a single
GenerationError carrying a user-facing message. No retries happen here.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Iterable, Sequence

from jinja2 import TemplateError
from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import GenerationError
from app.core.settings import settings
from app.prompts.loader import render_prompt
from app.services.json_parser import parse_json_text
from app.services.session_state import Dialogue, ImageArtifact, Scene
from app.services.vertex_gemini import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

DEFAULT_NARRATION = "..."


class StorylineBeat(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)


class CharacterDraft(BaseModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)


class RewrittenDescription(BaseModel):
    new_description: str = Field(alias="newDescription", min_length=1)


class _ScriptDialogue(BaseModel):
    character_name: str = Field(alias="characterName")
    line: str


class _ScriptEntry(BaseModel):
    scene_id: str = Field(alias="sceneId")
    narration: str | None = None
    dialogues: list[_ScriptDialogue] | None = None


class SceneScript(BaseModel):
    narration: str
    dialogues: tuple[Dialogue, ...] = ()


_STRING = {"type": "STRING"}

STORYLINE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING", "description": "The title of the scene."},
            "description": {
                "type": "STRING",
                "description": "The detailed description of the scene, including actions, setting, and dialogue.",
            },
        },
        "required": ["title", "description"],
    },
}

CHARACTERS_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING", "description": "The name of the character."},
            "description": {
                "type": "STRING",
                "description": "The detailed physical description of the character.",
            },
        },
        "required": ["name", "description"],
    },
}

REWRITE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "newDescription": {
            "type": "STRING",
            "description": "The full, updated character description.",
        },
    },
    "required": ["newDescription"],
}

SCRIPT_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "sceneId": _STRING,
            "narration": _STRING,
            "dialogues": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {"characterName": _STRING, "line": _STRING},
                    "required": ["characterName", "line"],
                },
            },
        },
        "required": ["sceneId", "narration"],
    },
}

PRESENCE_SCHEMA = {"type": "ARRAY", "items": _STRING}

_storyline_adapter = TypeAdapter(list[StorylineBeat])
_characters_adapter = TypeAdapter(list[CharacterDraft])
_script_adapter = TypeAdapter(list[_ScriptEntry])
_names_adapter = TypeAdapter(list[str])


@asynccontextmanager
async def _generation_boundary(operation: str, message: str):
    """Convert every provider or shape failure into one GenerationError."""
    try:
        yield
    except GenerationError:
        raise
    except (GeminiError, PydanticValidationError, TemplateError, ValueError, TypeError) as exc:
        logger.error("gateway.%s failed error=%r", operation, exc)
        raise GenerationError(message, detail=str(exc)) from exc


class GenerationGateway:
    def __init__(self, gemini: GeminiClient, max_characters: int | None = None) -> None:
        self._gemini = gemini
        self._max_characters = max_characters or settings.max_characters

    async def _structured(self, prompt: str, schema: dict):
        text = await self._gemini.generate_json(prompt=prompt, response_schema=schema)
        parsed = parse_json_text(text)
        if parsed is None:
            raise ValueError("model returned non-parseable structured output")
        return parsed

    # -- text ------------------------------------------------------------

    async def generate_storyline(self, seed_text: str) -> list[StorylineBeat]:
        async with _generation_boundary("generate_storyline", "Failed to generate storyline."):
            prompt = render_prompt("prompt_storyline", seed_text=seed_text)
            beats = _storyline_adapter.validate_python(await self._structured(prompt, STORYLINE_SCHEMA))
            if not beats:
                raise ValueError("storyline came back empty")
            return beats

    async def generate_characters(self, scenes: Sequence[Scene]) -> list[CharacterDraft]:
        async with _generation_boundary("generate_characters", "Failed to generate characters."):
            prompt = render_prompt(
                "prompt_characters",
                scenes=scenes,
                max_characters=self._max_characters,
            )
            drafts = _characters_adapter.validate_python(await self._structured(prompt, CHARACTERS_SCHEMA))
            if not drafts:
                raise ValueError("no characters came back")
            return drafts[: self._max_characters]

    async def rewrite_description(self, current_description: str, command: str) -> str:
        async with _generation_boundary(
            "rewrite_description",
            "Failed to process tweak command. The AI couldn't update the description.",
        ):
            prompt = render_prompt(
                "prompt_rewrite_description",
                current_description=current_description,
                command=command,
            )
            parsed = await self._structured(prompt, REWRITE_SCHEMA)
            return RewrittenDescription.model_validate(parsed).new_description

    async def generate_script(
        self,
        scenes: Sequence[Scene],
        character_names: Sequence[str],
    ) -> dict[str, SceneScript]:
        """Script every scene; scenes the model skipped get the default narration and no dialogue."""
        async with _generation_boundary("generate_script", "Failed to generate script."):
            prompt = render_prompt(
                "prompt_script",
                scenes=scenes,
                character_names=list(character_names),
            )
            entries = _script_adapter.validate_python(await self._structured(prompt, SCRIPT_SCHEMA))

        by_scene = {entry.scene_id: entry for entry in entries}
        missing = [scene.id for scene in scenes if scene.id not in by_scene]
        if missing:
            logger.info("script missing scenes=%s; using defaults", missing)

        scripts: dict[str, SceneScript] = {}
        for scene in scenes:
            entry = by_scene.get(scene.id)
            if entry is None:
                scripts[scene.id] = SceneScript(narration=DEFAULT_NARRATION)
                continue
            scripts[scene.id] = SceneScript(
                narration=entry.narration or DEFAULT_NARRATION,
                dialogues=tuple(
                    Dialogue(character_name=d.character_name, line=d.line)
                    for d in entry.dialogues or []
                ),
            )
        return scripts

    async def identify_present_characters(self, description: str, character_names: Sequence[str]) -> list[str]:
        async with _generation_boundary(
            "identify_present_characters",
            "Failed to work out which characters appear in the scene.",
        ):
            prompt = render_prompt(
                "prompt_present_characters",
                description=description,
                character_names=list(character_names),
            )
            return _names_adapter.validate_python(await self._structured(prompt, PRESENCE_SCHEMA))

    # -- images ----------------------------------------------------------

    async def generate_character_image(self, description: str, model: str) -> ImageArtifact:
        async with _generation_boundary("generate_character_image", "Failed to generate character image."):
            prompt = render_prompt("prompt_character_portrait", description=description)
            data, mime_type = await self._gemini.generate_images(prompt=prompt, model=model)
            return ImageArtifact(data=data, mime_type=mime_type)

    async def generate_background(self, prompt: str, model: str, failure_message: str) -> ImageArtifact:
        async with _generation_boundary("generate_background", failure_message):
            data, mime_type = await self._gemini.generate_images(prompt=prompt, model=model)
            return ImageArtifact(data=data, mime_type=mime_type)

    async def edit_image(self, image: ImageArtifact, instruction: str, failure_message: str) -> ImageArtifact:
        """Edit an existing image; a text-only answer from the model counts as failure."""
        async with _generation_boundary("edit_image", failure_message):
            data, mime_type = await self._gemini.generate_image_content(
                prompt=instruction,
                images=[(image.data, image.mime_type)],
            )
            return ImageArtifact(data=data, mime_type=mime_type)

    async def composite_image(
        self,
        background: ImageArtifact | None,
        character_images: Iterable[ImageArtifact],
        instruction: str,
        failure_message: str,
    ) -> ImageArtifact:
        """Composite the background (if any) and character images under one instruction."""
        inputs = [(background.data, background.mime_type)] if background is not None else []
        inputs.extend((image.data, image.mime_type) for image in character_images)
        async with _generation_boundary("composite_image", failure_message):
            data, mime_type = await self._gemini.generate_image_content(prompt=instruction, images=inputs)
            return ImageArtifact(data=data, mime_type=mime_type)
