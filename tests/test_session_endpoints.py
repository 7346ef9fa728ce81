import uuid

import pytest

from app.api import deps
from app.core.gemini_factory import GeminiNotConfiguredError
from app.main import app


async def _create(client) -> str:
    resp = await client.post("/v1/sessions")
    assert resp.status_code == 201
    return resp.json()["id"]


async def _to_characters(client, session_id: str) -> dict:
    await client.patch(f"/v1/sessions/{session_id}", json={"prompt": "Night Train"})
    assert (await client.post(f"/v1/sessions/{session_id}/storyline")).status_code == 200
    resp = await client.post(f"/v1/sessions/{session_id}/characters")
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.anyio
async def test_create_and_get_session(client):
    session_id = await _create(client)
    resp = await client.get(f"/v1/sessions/{session_id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "PROMPT"
    assert body["image_model"] == "imagen-4.0-generate-001"
    assert body["scenes"] == body["characters"] == body["panels"] == []
    assert body["error"] is None


@pytest.mark.anyio
async def test_unknown_session_is_404(client):
    resp = await client.get(f"/v1/sessions/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["detail"].startswith("session not found")


@pytest.mark.anyio
async def test_delete_session(client):
    session_id = await _create(client)
    assert (await client.delete(f"/v1/sessions/{session_id}")).status_code == 204
    assert (await client.get(f"/v1/sessions/{session_id}")).status_code == 404


@pytest.mark.anyio
async def test_image_models(client):
    resp = await client.get("/v1/image-models")
    assert resp.json() == [
        {"id": "imagen-4.0-generate-001", "name": "Imagen 4.0"},
        {"id": "imagen-3.0-generate-002", "name": "Imagen 3.0"},
    ]


@pytest.mark.anyio
async def test_patch_session_validates_model(client):
    session_id = await _create(client)
    ok = await client.patch(f"/v1/sessions/{session_id}", json={"image_model": "imagen-3.0-generate-002"})
    assert ok.json()["image_model"] == "imagen-3.0-generate-002"

    bad = await client.patch(f"/v1/sessions/{session_id}", json={"image_model": "nope"})
    assert bad.status_code == 400
    assert bad.json()["error_type"] == "ValidationError"


@pytest.mark.anyio
async def test_empty_prompt_is_400(client):
    session_id = await _create(client)
    resp = await client.post(f"/v1/sessions/{session_id}/storyline")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please enter a prompt for your comic."


@pytest.mark.anyio
async def test_out_of_order_transition_is_409(client):
    session_id = await _create(client)
    resp = await client.post(f"/v1/sessions/{session_id}/comic")
    assert resp.status_code == 409
    assert resp.json()["error_type"] == "GuardViolation"


@pytest.mark.anyio
async def test_failed_generation_returns_session_with_error(client, gateway):
    session_id = await _create(client)
    gateway.fail["generate_storyline"] = "Failed to generate storyline."
    await client.patch(f"/v1/sessions/{session_id}", json={"prompt": "Night Train"})

    resp = await client.post(f"/v1/sessions/{session_id}/storyline")

    assert resp.status_code == 200
    assert resp.json()["status"] == "PROMPT"
    assert resp.json()["error"] == "Failed to generate storyline."


@pytest.mark.anyio
async def test_walkthrough_over_http(client):
    session_id = await _create(client)
    body = await _to_characters(client, session_id)
    assert body["status"] == "CHARACTERS"
    assert [c["id"] for c in body["characters"]] == ["char-0", "char-1"]

    blocked = await client.post(f"/v1/sessions/{session_id}/script")
    assert blocked.status_code == 409

    for index in range(len(body["characters"])):
        resp = await client.post(f"/v1/sessions/{session_id}/characters/{index}/image")
        character = resp.json()["characters"][index]
        assert character["status"] == "DONE"
        assert character["image_url"].startswith("data:image/png;base64,")
        assert character["image_mime_type"] == "image/png"
        assert character["is_generating_image"] is False

    body = (await client.post(f"/v1/sessions/{session_id}/script")).json()
    assert body["status"] == "SCRIPTING"
    assert body["scenes"][0]["dialogues"][0]["character_name"] == "Kai"

    edited = await client.patch(f"/v1/sessions/{session_id}/scenes/0", json={"narration": "Steam."})
    assert edited.json()["scenes"][0]["narration"] == "Steam."

    body = (await client.post(f"/v1/sessions/{session_id}/panels")).json()
    assert body["status"] == "PANEL_GENERATION"
    assert [p["panel_type"] for p in body["panels"]] == ["COVER", "SCENE", "SCENE", "SCENE", "BACK"]
    assert body["panels"][1]["scene"]["narration"] == "Steam."

    batch = (await client.post(f"/v1/sessions/{session_id}/panels/generate-all")).json()
    assert batch["results"] == [True] * 5
    assert all(p["status"] == "DONE" for p in batch["session"]["panels"])
    assert batch["session"]["panels"][1]["background_image_url"] is not None
    assert batch["session"]["panels"][0]["background_image_url"] is None

    body = (await client.post(f"/v1/sessions/{session_id}/comic")).json()
    assert body["status"] == "COMIC"

    image = await client.get(f"/v1/sessions/{session_id}/panels/1/image")
    assert image.status_code == 200
    assert image.headers["content-disposition"] == 'attachment; filename="scene-0.png"'


@pytest.mark.anyio
async def test_character_tweak_over_http(client, gateway):
    session_id = await _create(client)
    await _to_characters(client, session_id)
    await client.post(f"/v1/sessions/{session_id}/characters/0/image")

    patched = await client.patch(f"/v1/sessions/{session_id}/characters/0", json={"tweak_input": "eye patch"})
    assert patched.json()["characters"][0]["tweak_input"] == "eye patch"

    resp = await client.post(f"/v1/sessions/{session_id}/characters/0/tweak", json={})
    character = resp.json()["characters"][0]
    assert character["description"] == gateway.rewritten
    assert character["tweak_input"] == ""

    empty = await client.post(f"/v1/sessions/{session_id}/characters/1/tweak", json={"command": " "})
    assert empty.status_code == 400


@pytest.mark.anyio
async def test_character_image_download(client):
    session_id = await _create(client)
    await _to_characters(client, session_id)

    missing = await client.get(f"/v1/sessions/{session_id}/characters/0/image")
    assert missing.status_code == 404

    await client.post(f"/v1/sessions/{session_id}/characters/0/image")
    resp = await client.get(f"/v1/sessions/{session_id}/characters/0/image")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["content-disposition"] == 'attachment; filename="Kai.png"'


@pytest.mark.anyio
async def test_text_exports(client):
    session_id = await _create(client)
    await _to_characters(client, session_id)

    storyline = await client.get(f"/v1/sessions/{session_id}/exports/storyline")
    assert storyline.status_code == 200
    assert storyline.text.startswith("Scene: Arrival\n-----------------\n")
    assert 'filename="storyline.txt"' in storyline.headers["content-disposition"]

    profiles = await client.get(f"/v1/sessions/{session_id}/exports/characters")
    assert profiles.text.startswith("# Kai\n\n## Description\n\n")
    assert 'filename="character-profiles.md"' in profiles.headers["content-disposition"]

    script = await client.get(f"/v1/sessions/{session_id}/exports/script")
    assert "**Narration:**\nN/A" in script.text


@pytest.mark.anyio
async def test_pdf_export_without_panels_is_400(client):
    session_id = await _create(client)
    resp = await client.get(f"/v1/sessions/{session_id}/exports/comic.pdf")
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_reset_over_http(client):
    session_id = await _create(client)
    await _to_characters(client, session_id)
    body = (await client.post(f"/v1/sessions/{session_id}/reset")).json()
    assert body["status"] == "PROMPT"
    assert body["characters"] == []


@pytest.mark.anyio
async def test_missing_credentials_is_500(client):
    def unconfigured():
        raise GeminiNotConfiguredError()

    app.dependency_overrides[deps.generation_gateway] = unconfigured
    session_id = await _create(client)
    await client.patch(f"/v1/sessions/{session_id}", json={"prompt": "Night Train"})

    resp = await client.post(f"/v1/sessions/{session_id}/storyline")
    assert resp.status_code == 500
    assert resp.json()["error_type"] == "GeminiNotConfiguredError"


@pytest.mark.anyio
async def test_request_id_is_echoed(client):
    resp = await client.get("/health", headers={"x-request-id": "abc-123"})
    assert resp.headers["x-request-id"] == "abc-123"


@pytest.mark.anyio
async def test_metrics_exposes_wizard_counters(client):
    session_id = await _create(client)
    await client.post(f"/v1/sessions/{session_id}/comic")
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "comic_wizard_stage_transitions_total" in resp.text


@pytest.mark.anyio
async def test_rejected_session_patch_changes_nothing(client):
    session_id = await _create(client)
    await client.patch(f"/v1/sessions/{session_id}", json={"prompt": "Night Train"})
    await client.post(f"/v1/sessions/{session_id}/storyline")

    resp = await client.patch(
        f"/v1/sessions/{session_id}",
        json={"title": "Changed", "prompt": "new", "image_model": "imagen-3.0-generate-002"},
    )
    assert resp.status_code == 400

    body = (await client.get(f"/v1/sessions/{session_id}")).json()
    assert body["title"] == "Night Train"
    assert body["prompt"] == "Night Train"
    assert body["image_model"] == "imagen-4.0-generate-001"


@pytest.mark.anyio
async def test_bad_image_model_rejects_whole_session_patch(client):
    session_id = await _create(client)
    resp = await client.patch(f"/v1/sessions/{session_id}", json={"title": "Kept out", "image_model": "nope"})
    assert resp.status_code == 400
    assert (await client.get(f"/v1/sessions/{session_id}")).json()["title"] == ""


@pytest.mark.anyio
async def test_rejected_scene_patch_changes_nothing(client):
    session_id = await _create(client)
    await client.patch(f"/v1/sessions/{session_id}", json={"prompt": "Night Train"})
    before = (await client.post(f"/v1/sessions/{session_id}/storyline")).json()["scenes"][0]

    resp = await client.patch(f"/v1/sessions/{session_id}/scenes/0", json={"description": "EDITED", "narration": "x"})
    assert resp.status_code == 400

    after = (await client.get(f"/v1/sessions/{session_id}")).json()["scenes"][0]
    assert after == before
