"""
In-memory session aggregate for the comic wizard.

Entities are frozen pydantic models. Every change is a whole-item
replacement located by id (`replace_by_id`), so a completion that lands
after an unrelated edit only ever touches its own item.
"""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, TypeVar

from pydantic import BaseModel, ConfigDict, model_validator

from app.core.exceptions import ValidationError
from app.core.settings import settings


class AppStatus(str, Enum):
    PROMPT = "PROMPT"
    STORYLINE = "STORYLINE"
    CHARACTERS = "CHARACTERS"
    SCRIPTING = "SCRIPTING"
    PANEL_GENERATION = "PANEL_GENERATION"
    COMIC = "COMIC"


STAGE_ORDER: tuple[AppStatus, ...] = tuple(AppStatus)


class ItemKind(str, Enum):
    CHARACTER = "character"
    PANEL = "panel"


class ItemState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    GENERATING = "GENERATING"
    UPDATING = "UPDATING"
    DONE = "DONE"
    FAILED = "FAILED"


class PanelType(str, Enum):
    COVER = "COVER"
    SCENE = "SCENE"
    BACK = "BACK"


COVER_SCENE_ID = "cover-page"
BACK_SCENE_ID = "back-cover"


class ImageArtifact(BaseModel):
    """Generated image bytes paired with their MIME type."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "image/png"

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


class Dialogue(BaseModel):
    model_config = ConfigDict(frozen=True)

    character_name: str
    line: str


class Scene(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    narration: str | None = None
    dialogues: tuple[Dialogue, ...] = ()


class Character(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    image: ImageArtifact | None = None
    status: ItemState = ItemState.NOT_STARTED
    tweak_input: str = ""

    @property
    def image_url(self) -> str | None:
        return self.image.data_url if self.image else None

    @property
    def image_mime_type(self) -> str | None:
        return self.image.mime_type if self.image else None

    @property
    def is_generating_image(self) -> bool:
        return self.status in (ItemState.GENERATING, ItemState.UPDATING)

    @property
    def artifact(self) -> ImageArtifact | None:
        return self.image


class Panel(BaseModel):
    model_config = ConfigDict(frozen=True)

    scene: Scene
    panel_type: PanelType
    final_image: ImageArtifact | None = None
    background_image: ImageArtifact | None = None
    status: ItemState = ItemState.NOT_STARTED
    tweak_input: str = ""

    @model_validator(mode="after")
    def _background_only_for_scene_panels(self) -> "Panel":
        if self.background_image is not None and self.panel_type is not PanelType.SCENE:
            raise ValueError(f"{self.panel_type.value} panels never carry a background image")
        return self

    @property
    def id(self) -> str:
        return self.scene.id

    @property
    def final_image_url(self) -> str | None:
        return self.final_image.data_url if self.final_image else None

    @property
    def background_image_url(self) -> str | None:
        return self.background_image.data_url if self.background_image else None

    @property
    def is_generating_image(self) -> bool:
        return self.status in (ItemState.GENERATING, ItemState.UPDATING)

    @property
    def artifact(self) -> ImageArtifact | None:
        return self.final_image


Item = TypeVar("Item", Character, Panel, Scene)


def replace_by_id(items: tuple[Item, ...], item_id: str, **changes) -> tuple[Item, ...]:
    """Return a new tuple where only the item with `item_id` is rebuilt with `changes`.

    The rebuilt item is validated again, so model invariants hold after every patch.
    """
    found = False
    rebuilt: list[Item] = []
    for item in items:
        if item.id == item_id:
            found = True
            rebuilt.append(type(item)(**{**dict(item), **changes}))
        else:
            rebuilt.append(item)
    if not found:
        raise KeyError(item_id)
    return tuple(rebuilt)


def cover_panel(title: str) -> Panel:
    return Panel(
        scene=Scene(id=COVER_SCENE_ID, title=f"Cover: {title}", description="", narration=""),
        panel_type=PanelType.COVER,
    )


def back_cover_panel() -> Panel:
    return Panel(
        scene=Scene(id=BACK_SCENE_ID, title="The End", description="", narration=""),
        panel_type=PanelType.BACK,
    )


def build_panels(scenes: Iterable[Scene], title: str) -> tuple[Panel, ...]:
    """COVER, one SCENE panel per scene in order, then BACK; all NOT_STARTED."""
    scene_panels = [Panel(scene=scene, panel_type=PanelType.SCENE) for scene in scenes]
    return (cover_panel(title), *scene_panels, back_cover_panel())


def all_characters_have_images(characters: Iterable[Character]) -> bool:
    return all(character.image is not None for character in characters)


def all_panels_done(panels: Iterable[Panel]) -> bool:
    return all(panel.status is ItemState.DONE for panel in panels)


@dataclass
class ComicSession:
    """Root aggregate for one creative session.

    `epoch` increases on every reset so completions started before a reset
    can tell that the items they were working on no longer exist.
    """

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: AppStatus = AppStatus.PROMPT
    prompt: str = ""
    title: str = ""
    image_model: str = field(default_factory=lambda: settings.imagen_default_model)
    scenes: tuple[Scene, ...] = ()
    characters: tuple[Character, ...] = ()
    panels: tuple[Panel, ...] = ()
    error: str | None = None
    epoch: int = 0

    def reset(self) -> None:
        """Return to the PROMPT stage with every collection cleared.

        The image model choice is a session preference and survives a reset.
        """
        self.status = AppStatus.PROMPT
        self.prompt = ""
        self.title = ""
        self.scenes = ()
        self.characters = ()
        self.panels = ()
        self.error = None
        self.epoch += 1

    # -- lookups ---------------------------------------------------------

    def scene_at(self, index: int) -> Scene:
        return _at(self.scenes, index, "scene")

    def character_at(self, index: int) -> Character:
        return _at(self.characters, index, "character")

    def panel_at(self, index: int) -> Panel:
        return _at(self.panels, index, "panel")

    def scene_by_id(self, scene_id: str) -> Scene | None:
        return next((scene for scene in self.scenes if scene.id == scene_id), None)

    def panel_for_scene(self, scene_id: str) -> Panel | None:
        return next((panel for panel in self.panels if panel.id == scene_id), None)

    def get_item(self, kind: ItemKind, item_id: str) -> Character | Panel:
        items = self.characters if kind is ItemKind.CHARACTER else self.panels
        for item in items:
            if item.id == item_id:
                return item
        raise KeyError(item_id)

    # -- scoped patches --------------------------------------------------

    def patch_item(self, kind: ItemKind, item_id: str, **changes) -> None:
        if kind is ItemKind.CHARACTER:
            self.characters = replace_by_id(self.characters, item_id, **changes)
        else:
            self.panels = replace_by_id(self.panels, item_id, **changes)

    def patch_scene(self, scene_id: str, **changes) -> Scene:
        """Patch one scene and mirror it into its SCENE panel, if panels exist."""
        self.scenes = replace_by_id(self.scenes, scene_id, **changes)
        scene = self.scene_by_id(scene_id)
        if self.panel_for_scene(scene_id) is not None:
            self.panels = replace_by_id(self.panels, scene_id, scene=scene)
        return scene


def _at(items: tuple[Item, ...], index: int, label: str) -> Item:
    if index < 0 or index >= len(items):
        raise ValidationError(f"{label} index {index} is out of range", detail=f"{label} not found")
    return items[index]
