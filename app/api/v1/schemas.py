import uuid

from pydantic import BaseModel, ConfigDict, Field

from app.services.session_state import AppStatus, ItemState, PanelType


class DialogueRead(BaseModel):
    character_name: str
    line: str

    model_config = ConfigDict(from_attributes=True)


class SceneRead(BaseModel):
    id: str
    title: str
    description: str
    narration: str | None = None
    dialogues: list[DialogueRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CharacterRead(BaseModel):
    id: str
    name: str
    description: str
    image_url: str | None = None
    image_mime_type: str | None = None
    is_generating_image: bool = False
    status: ItemState
    tweak_input: str = ""

    model_config = ConfigDict(from_attributes=True)


class PanelRead(BaseModel):
    id: str
    scene: SceneRead
    panel_type: PanelType
    final_image_url: str | None = None
    background_image_url: str | None = None
    status: ItemState
    is_generating_image: bool = False
    tweak_input: str = ""

    model_config = ConfigDict(from_attributes=True)


class SessionRead(BaseModel):
    id: uuid.UUID
    status: AppStatus
    prompt: str
    title: str
    image_model: str
    scenes: list[SceneRead]
    characters: list[CharacterRead]
    panels: list[PanelRead]
    error: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PanelBatchRead(BaseModel):
    session: SessionRead
    results: list[bool]


class ImageModelOption(BaseModel):
    id: str
    name: str


class SessionUpdate(BaseModel):
    prompt: str | None = None
    title: str | None = None
    image_model: str | None = None


class SceneUpdate(BaseModel):
    description: str | None = None
    narration: str | None = None


class DialogueUpdate(BaseModel):
    line: str


class CharacterUpdate(BaseModel):
    description: str | None = None
    tweak_input: str | None = None


class PanelUpdate(BaseModel):
    tweak_input: str


class TweakRequest(BaseModel):
    """`command` falls back to the item's stored tweak input when omitted."""

    command: str | None = None
