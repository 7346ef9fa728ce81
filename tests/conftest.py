import asyncio

import httpx
import pytest

from app.api import deps
from app.core.exceptions import GenerationError
from app.main import app
from app.services.gateway import CharacterDraft, SceneScript, StorylineBeat
from app.services.session_state import Dialogue, ImageArtifact, Scene
from app.services.session_store import store


class FakeGateway:
    """Scripted stand-in for GenerationGateway.

    `fail` maps an operation name to the message of the GenerationError it
    raises. `hold` maps an operation name to an asyncio.Event the call waits
    on before answering, so tests can observe in-flight states.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail: dict[str, str] = {}
        self.hold: dict[str, asyncio.Event] = {}
        self.beats = [
            StorylineBeat(title="Arrival", description="Kai steps off the night train."),
            StorylineBeat(title="Rooftop", description="Kai and Mira race across rooftops."),
            StorylineBeat(title="Dawn", description="Mira watches the sunrise alone."),
        ]
        self.drafts = [
            CharacterDraft(name="Kai", description="Spiky black hair, red scarf."),
            CharacterDraft(name="Mira", description="Silver bob, long coat."),
        ]
        self.present: list[str] | None = None
        self.rewritten = "Spiky black hair, red scarf, eye patch."
        self._counter = 0

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        event = self.hold.get(operation)
        if event is not None:
            await event.wait()
        if operation in self.fail:
            raise GenerationError(self.fail[operation])

    def _image(self, tag: str) -> ImageArtifact:
        self._counter += 1
        return ImageArtifact(data=f"{tag}-{self._counter}".encode(), mime_type="image/png")

    def called(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def generate_storyline(self, seed_text: str):
        await self._enter("generate_storyline", seed_text)
        return list(self.beats)

    async def generate_characters(self, scenes):
        await self._enter("generate_characters", tuple(scenes))
        return list(self.drafts)

    async def rewrite_description(self, current_description: str, command: str) -> str:
        await self._enter("rewrite_description", current_description, command)
        return self.rewritten

    async def generate_script(self, scenes, character_names):
        await self._enter("generate_script", tuple(scenes), tuple(character_names))
        return {
            scene.id: SceneScript(
                narration=f"Narration for {scene.title}",
                dialogues=(Dialogue(character_name=character_names[0], line=f"Line in {scene.title}"),),
            )
            for scene in scenes
        }

    async def identify_present_characters(self, description: str, character_names):
        await self._enter("identify_present_characters", description, tuple(character_names))
        if self.present is not None:
            return list(self.present)
        return [name for name in character_names if name in description]

    async def generate_character_image(self, description: str, model: str) -> ImageArtifact:
        await self._enter("generate_character_image", description, model)
        return self._image("portrait")

    async def generate_background(self, prompt: str, model: str, failure_message: str) -> ImageArtifact:
        await self._enter("generate_background", prompt, model)
        return self._image("background")

    async def edit_image(self, image: ImageArtifact, instruction: str, failure_message: str) -> ImageArtifact:
        await self._enter("edit_image", image, instruction)
        return self._image("edited")

    async def composite_image(self, background, character_images, instruction: str, failure_message: str):
        await self._enter("composite_image", background, tuple(character_images), instruction)
        return self._image("composite")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def scenes():
    return (
        Scene(id="scene-0", title="Arrival", description="Kai steps off the night train."),
        Scene(id="scene-1", title="Rooftop", description="Kai and Mira race across rooftops."),
    )


@pytest.fixture(autouse=True)
def _clear_sessions():
    store.clear()
    yield
    store.clear()


@pytest.fixture()
async def client(gateway):
    app.dependency_overrides[deps.generation_gateway] = lambda: gateway
    try:
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def anyio_backend():
    return "asyncio"
