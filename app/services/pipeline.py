"""
Stage Pipeline Controller.

    PROMPT -> STORYLINE -> CHARACTERS -> SCRIPTING -> PANEL_GENERATION -> COMIC

Transitions are strictly forward and each checks its guard inside the
transition itself. Provider failures never escape: they are written to
`session.error` (and to the item's status for per-item work) and the
method returns False.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from app.core.exceptions import GenerationError, GuardViolation, ItemBusyError, ValidationError
from app.core.metrics import record_stage_transition
from app.core.request_context import log_context
from app.core.settings import IMAGE_MODEL_CHOICES, settings
from app.prompts.loader import render_prompt
from app.services.gateway import CharacterDraft, GenerationGateway, SceneScript, StorylineBeat
from app.services.item_status import ItemStatusTracker, Operation, is_busy
from app.services.reconciler import TweakReconciler
from app.services.session_state import (
    AppStatus,
    Character,
    ComicSession,
    ImageArtifact,
    ItemKind,
    ItemState,
    Panel,
    PanelType,
    Scene,
    all_characters_have_images,
    all_panels_done,
    build_panels,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineController:
    """Drives one session through the wizard.

    `gateway` may be omitted when only the synchronous edit operations are used.
    """

    def __init__(self, session: ComicSession, gateway: GenerationGateway | None = None) -> None:
        self.session = session
        self.gateway = gateway
        self.tracker = ItemStatusTracker(session)
        self.reconciler = TweakReconciler(session, gateway, self.tracker)

    # -- helpers ---------------------------------------------------------

    def _require_stage(self, current: AppStatus, target: AppStatus) -> None:
        if self.session.status is not current:
            record_stage_transition(self.session.status.value, target.value, "rejected")
            raise GuardViolation(
                self.session.status.value,
                target.value,
                f"the session must be at {current.value} to move to {target.value}",
            )

    def _require_editable(self, *stages: AppStatus) -> None:
        if self.session.status not in stages:
            allowed = ", ".join(stage.value for stage in stages)
            raise ValidationError(
                f"this edit is only available during {allowed}",
                detail=f"not editable during {self.session.status.value}",
            )

    def _advance(self, target: AppStatus) -> None:
        source = self.session.status
        self.session.status = target
        record_stage_transition(source.value, target.value, "succeeded")
        logger.info("stage advanced from=%s to=%s", source.value, target.value)

    async def _transition(
        self,
        source: AppStatus,
        target: AppStatus,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], None],
    ) -> bool:
        """Run a Gateway-backed transition.

        `fetch` does the provider work; `apply` writes its result and runs
        only if the session is still where the transition started.
        """
        epoch = self.session.epoch
        self.session.error = None
        with log_context(session_id=self.session.id):
            try:
                result = await fetch()
            except GenerationError as exc:
                if self.session.epoch == epoch:
                    self.session.error = str(exc)
                record_stage_transition(source.value, target.value, "failed")
                logger.warning("transition failed from=%s to=%s error=%s", source.value, target.value, exc)
                return False
            if self.session.epoch != epoch or self.session.status is not source:
                logger.info("transition to %s dropped; session changed while in flight", target.value)
                return False
            apply(result)
            self._advance(target)
            return True

    # -- stage transitions -------------------------------------------------

    async def generate_storyline(self) -> bool:
        """PROMPT -> STORYLINE: scenes from the seed prompt; the prompt becomes the title."""
        self._require_stage(AppStatus.PROMPT, AppStatus.STORYLINE)
        prompt = self.session.prompt
        if not prompt.strip():
            raise ValidationError("Please enter a prompt for your comic.")

        def apply(beats: list[StorylineBeat]) -> None:
            self.session.scenes = tuple(
                Scene(id=f"scene-{index}", title=beat.title, description=beat.description)
                for index, beat in enumerate(beats)
            )
            self.session.title = prompt

        return await self._transition(
            AppStatus.PROMPT,
            AppStatus.STORYLINE,
            lambda: self.gateway.generate_storyline(prompt),
            apply,
        )

    async def finalize_storyline(self) -> bool:
        """STORYLINE -> CHARACTERS."""
        self._require_stage(AppStatus.STORYLINE, AppStatus.CHARACTERS)
        if not self.session.scenes:
            raise GuardViolation(AppStatus.STORYLINE.value, AppStatus.CHARACTERS.value, "the storyline has no scenes")
        scenes = self.session.scenes

        def apply(drafts: list[CharacterDraft]) -> None:
            self.session.characters = tuple(
                Character(id=f"char-{index}", name=draft.name, description=draft.description)
                for index, draft in enumerate(drafts)
            )

        return await self._transition(
            AppStatus.STORYLINE,
            AppStatus.CHARACTERS,
            lambda: self.gateway.generate_characters(scenes),
            apply,
        )

    async def generate_script(self) -> bool:
        """CHARACTERS -> SCRIPTING, only once every character has an image."""
        self._require_stage(AppStatus.CHARACTERS, AppStatus.SCRIPTING)
        if not all_characters_have_images(self.session.characters):
            record_stage_transition(AppStatus.CHARACTERS.value, AppStatus.SCRIPTING.value, "rejected")
            raise GuardViolation(
                AppStatus.CHARACTERS.value,
                AppStatus.SCRIPTING.value,
                "Please generate an image for all characters before writing the script.",
            )
        scenes = self.session.scenes
        names = [character.name for character in self.session.characters]

        def apply(scripts: dict[str, SceneScript]) -> None:
            for scene in self.session.scenes:
                script = scripts.get(scene.id)
                if script is None:
                    continue
                self.session.patch_scene(scene.id, narration=script.narration, dialogues=script.dialogues)

        return await self._transition(
            AppStatus.CHARACTERS,
            AppStatus.SCRIPTING,
            lambda: self.gateway.generate_script(scenes, names),
            apply,
        )

    def proceed_to_panel_generation(self) -> None:
        """SCRIPTING -> PANEL_GENERATION: cover, one panel per scene, back cover."""
        self._require_stage(AppStatus.SCRIPTING, AppStatus.PANEL_GENERATION)
        self.session.error = None
        self.session.panels = build_panels(self.session.scenes, self.session.title)
        self._advance(AppStatus.PANEL_GENERATION)

    def proceed_to_comic(self) -> None:
        """PANEL_GENERATION -> COMIC, only once every panel is DONE."""
        self._require_stage(AppStatus.PANEL_GENERATION, AppStatus.COMIC)
        if not all_panels_done(self.session.panels):
            record_stage_transition(AppStatus.PANEL_GENERATION.value, AppStatus.COMIC.value, "rejected")
            raise GuardViolation(
                AppStatus.PANEL_GENERATION.value,
                AppStatus.COMIC.value,
                "every panel must be generated before viewing the comic",
            )
        self.session.error = None
        self._advance(AppStatus.COMIC)

    def reset(self) -> None:
        logger.info("session reset", extra={"session_id": str(self.session.id)})
        self.session.reset()

    # -- session-level edits -------------------------------------------------

    def set_prompt(self, text: str) -> None:
        self._require_editable(AppStatus.PROMPT)
        self.session.prompt = text

    def set_title(self, text: str) -> None:
        self.session.title = text

    def _check_image_model(self, model: str) -> None:
        if model not in IMAGE_MODEL_CHOICES:
            choices = ", ".join(IMAGE_MODEL_CHOICES)
            raise ValidationError(f"unknown image model {model!r}; choose one of: {choices}")

    def set_image_model(self, model: str) -> None:
        self._check_image_model(model)
        self.session.image_model = model

    def update_session(
        self,
        *,
        prompt: str | None = None,
        title: str | None = None,
        image_model: str | None = None,
    ) -> None:
        """Apply several session edits together; every field is checked before any is written."""
        if prompt is not None:
            self._require_editable(AppStatus.PROMPT)
        if image_model is not None:
            self._check_image_model(image_model)

        if image_model is not None:
            self.session.image_model = image_model
        if title is not None:
            self.session.title = title
        if prompt is not None:
            self.session.prompt = prompt

    # -- scene edits ---------------------------------------------------------

    def _guard_scene_panel(self, scene: Scene) -> None:
        panel = self.session.panel_for_scene(scene.id)
        if panel is not None and is_busy(panel.status):
            raise ItemBusyError(ItemKind.PANEL.value, panel.id)

    def edit_scene_description(self, scene_index: int, text: str) -> Scene:
        return self.edit_scene(scene_index, description=text)

    def edit_scene_narration(self, scene_index: int, text: str) -> Scene:
        return self.edit_scene(scene_index, narration=text)

    def edit_scene(
        self,
        scene_index: int,
        *,
        description: str | None = None,
        narration: str | None = None,
    ) -> Scene:
        """Patch description and/or narration in one step, or reject without touching the scene.

        Descriptions are editable during STORYLINE, narration during
        SCRIPTING and PANEL_GENERATION, so a payload carrying both is always rejected.
        """
        if description is not None:
            self._require_editable(AppStatus.STORYLINE)
        if narration is not None:
            self._require_editable(AppStatus.SCRIPTING, AppStatus.PANEL_GENERATION)
        scene = self.session.scene_at(scene_index)
        if narration is not None:
            self._guard_scene_panel(scene)

        changes = {
            field: value
            for field, value in (("description", description), ("narration", narration))
            if value is not None
        }
        if not changes:
            return scene
        return self.session.patch_scene(scene.id, **changes)

    def edit_dialogue_line(self, scene_index: int, dialogue_index: int, text: str) -> Scene:
        self._require_editable(AppStatus.SCRIPTING, AppStatus.PANEL_GENERATION)
        scene = self.session.scene_at(scene_index)
        self._guard_scene_panel(scene)
        if dialogue_index < 0 or dialogue_index >= len(scene.dialogues):
            raise ValidationError(f"dialogue index {dialogue_index} is out of range", detail="dialogue not found")
        dialogues = tuple(
            dialogue.model_copy(update={"line": text}) if i == dialogue_index else dialogue
            for i, dialogue in enumerate(scene.dialogues)
        )
        return self.session.patch_scene(scene.id, dialogues=dialogues)

    # -- characters ------------------------------------------------------------

    def _idle_character(self, index: int) -> Character:
        self._require_editable(AppStatus.CHARACTERS)
        character = self.session.character_at(index)
        if character.is_generating_image:
            raise ItemBusyError(ItemKind.CHARACTER.value, character.id)
        return character

    def edit_character_description(self, index: int, text: str) -> Character:
        character = self._idle_character(index)
        self.session.patch_item(ItemKind.CHARACTER, character.id, description=text)
        return self.session.character_at(index)

    def set_character_tweak_input(self, index: int, text: str) -> Character:
        character = self._idle_character(index)
        self.session.patch_item(ItemKind.CHARACTER, character.id, tweak_input=text)
        return self.session.character_at(index)

    async def generate_character_image(self, index: int) -> bool:
        self._require_editable(AppStatus.CHARACTERS)
        character = self.session.character_at(index)
        description = character.description
        model = self.session.image_model

        async def work() -> dict:
            image = await self.gateway.generate_character_image(description, model)
            return {"image": image}

        return await self.tracker.run(ItemKind.CHARACTER, character.id, Operation.GENERATE, work)

    async def update_character_image(self, index: int) -> bool:
        """Edit the existing portrait so it matches the current description."""
        self._require_editable(AppStatus.CHARACTERS)
        character = self.session.character_at(index)
        if character.image is None:
            raise ValidationError("Please generate an initial image before updating it.")
        image = character.image
        instruction = render_prompt("prompt_character_update", description=character.description)

        async def work() -> dict:
            updated = await self.gateway.edit_image(image, instruction, "Failed to update character image.")
            return {"image": updated}

        return await self.tracker.run(ItemKind.CHARACTER, character.id, Operation.UPDATE, work)

    async def tweak_character(self, index: int, command: str | None = None) -> bool:
        self._require_editable(AppStatus.CHARACTERS)
        return await self.reconciler.tweak_character(index, command)

    # -- panels ------------------------------------------------------------------

    def set_panel_tweak_input(self, index: int, text: str) -> Panel:
        self._require_editable(AppStatus.PANEL_GENERATION)
        panel = self.session.panel_at(index)
        if is_busy(panel.status):
            raise ItemBusyError(ItemKind.PANEL.value, panel.id)
        self.session.patch_item(ItemKind.PANEL, panel.id, tweak_input=text)
        return self.session.panel_at(index)

    def _characters_with_images(self) -> list[tuple[str, ImageArtifact]]:
        return [
            (character.name, character.image)
            for character in self.session.characters
            if character.image is not None
        ]

    async def _render_cover(self, title: str, model: str) -> dict:
        cast = self._characters_with_images()
        background = await self.gateway.generate_background(
            render_prompt("prompt_cover_background"),
            model,
            "Failed to create the comic cover.",
        )
        final = await self.gateway.composite_image(
            background,
            [image for _, image in cast],
            render_prompt("prompt_cover_composite", title=title, character_names=[name for name, _ in cast]),
            "Failed to create the comic cover.",
        )
        return {"final_image": final}

    async def _composite_scene(self, scene: Scene, background: ImageArtifact) -> ImageArtifact:
        failure = f'Failed to composite final panel for "{scene.title}".'
        roster = [character.name for character in self.session.characters]
        present = set(await self.gateway.identify_present_characters(scene.description, roster))
        cast = [(name, image) for name, image in self._characters_with_images() if name in present]
        instruction = render_prompt(
            "prompt_scene_composite",
            description=scene.description,
            narration=scene.narration,
            dialogues=scene.dialogues,
            character_names=[name for name, _ in cast],
        )
        return await self.gateway.composite_image(background, [image for _, image in cast], instruction, failure)

    async def _render_scene(self, scene: Scene, model: str) -> dict:
        background = await self.gateway.generate_background(
            render_prompt("prompt_scene_background", description=scene.description),
            model,
            f'Failed to generate background for "{scene.title}".',
        )
        final = await self._composite_scene(scene, background)
        return {"final_image": final, "background_image": background}

    async def _render_back(self, model: str) -> dict:
        credit = settings.back_cover_credit
        cast = self._characters_with_images()
        if cast:
            _, subject = cast[0]
            final = await self.gateway.composite_image(
                None,
                [subject],
                render_prompt("prompt_back_cover_with_character", credit=credit),
                "Failed to create the back cover.",
            )
        else:
            final = await self.gateway.generate_background(
                render_prompt("prompt_back_cover_text_only", credit=credit),
                model,
                "Failed to create the back cover.",
            )
        return {"final_image": final}

    async def generate_panel(self, index: int) -> bool:
        """Generate (or retry) one panel; the branch depends on its type."""
        self._require_editable(AppStatus.PANEL_GENERATION)
        panel = self.session.panel_at(index)
        model = self.session.image_model

        if panel.panel_type is PanelType.COVER:
            title = self.session.title

            async def work() -> dict:
                return await self._render_cover(title, model)

        elif panel.panel_type is PanelType.SCENE:
            scene = self.session.scene_by_id(panel.id) or panel.scene

            async def work() -> dict:
                return await self._render_scene(scene, model)

        elif panel.panel_type is PanelType.BACK:

            async def work() -> dict:
                return await self._render_back(model)

        else:  # pragma: no cover
            raise ValueError(f"unhandled panel type {panel.panel_type!r}")

        return await self.tracker.run(ItemKind.PANEL, panel.id, Operation.GENERATE, work)

    async def update_panel_from_text(self, index: int) -> bool:
        """Recomposite a scene panel over its kept background using the current script."""
        self._require_editable(AppStatus.PANEL_GENERATION)
        panel = self.session.panel_at(index)
        if panel.panel_type is not PanelType.SCENE:
            raise ValidationError("Only scene panels can be updated from text.")
        if panel.background_image is None:
            raise ValidationError("Generate the panel before updating it from text.")
        scene = self.session.scene_by_id(panel.id) or panel.scene
        background = panel.background_image

        async def work() -> dict:
            return {"final_image": await self._composite_scene(scene, background)}

        return await self.tracker.run(ItemKind.PANEL, panel.id, Operation.UPDATE, work)

    async def tweak_panel(self, index: int, command: str | None = None) -> bool:
        self._require_editable(AppStatus.PANEL_GENERATION)
        return await self.reconciler.tweak_panel(index, command)

    async def generate_all_panels(self) -> list[bool]:
        """Generate every panel that is not DONE and not busy, concurrently.

        One panel failing does not stop its siblings.
        """
        self._require_editable(AppStatus.PANEL_GENERATION)
        pending = [
            index
            for index, panel in enumerate(self.session.panels)
            if panel.status in (ItemState.NOT_STARTED, ItemState.FAILED)
        ]
        logger.info("generating %d panels", len(pending))
        return list(await asyncio.gather(*(self.generate_panel(index) for index in pending)))
