"""
Edit/Tweak Reconciler.

A tweak is a natural-language instruction applied to an artifact that
already exists. Preconditions are checked before the item is locked; the
provider calls then run under the item lock and their results replace the
item's description/image in one patch, together with clearing the tweak
input. A failure leaves the previous artifact in place.
"""

from __future__ import annotations

from app.core.exceptions import ValidationError
from app.prompts.loader import render_prompt
from app.services.gateway import GenerationGateway
from app.services.item_status import ItemStatusTracker, Operation
from app.services.session_state import ComicSession, ItemKind


class TweakReconciler:
    def __init__(self, session: ComicSession, gateway: GenerationGateway, tracker: ItemStatusTracker) -> None:
        self.session = session
        self.gateway = gateway
        self.tracker = tracker

    async def tweak_character(self, index: int, command: str | None = None) -> bool:
        """Rewrite the description from the command, then redraw the portrait from it.

        `command` defaults to the character's stored tweak input.
        """
        character = self.session.character_at(index)
        command = character.tweak_input if command is None else command
        if not command.strip():
            raise ValidationError("Please enter a tweak command.")
        if character.image is None:
            raise ValidationError("Please generate an initial image before tweaking.")

        description = character.description
        image = character.image

        async def work() -> dict:
            new_description = await self.gateway.rewrite_description(description, command)
            updated = await self.gateway.edit_image(
                image,
                render_prompt("prompt_character_update", description=new_description),
                "Failed to update character image.",
            )
            return {"description": new_description, "image": updated, "tweak_input": ""}

        return await self.tracker.run(ItemKind.CHARACTER, character.id, Operation.TWEAK, work)

    async def tweak_panel(self, index: int, command: str | None = None) -> bool:
        """Edit the finished panel image in place from the command."""
        panel = self.session.panel_at(index)
        command = panel.tweak_input if command is None else command
        if not command.strip():
            raise ValidationError("Please enter a tweak command.")
        if panel.final_image is None:
            raise ValidationError("Generate the panel before tweaking it.")

        image = panel.final_image
        instruction = render_prompt("prompt_panel_tweak", command=command)

        async def work() -> dict:
            updated = await self.gateway.edit_image(image, instruction, "Failed to tweak comic panel.")
            return {"final_image": updated, "tweak_input": ""}

        return await self.tracker.run(ItemKind.PANEL, panel.id, Operation.TWEAK, work)
