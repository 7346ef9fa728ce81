"""Tests for application-level exception types."""

import uuid

import pytest

from app.core.exceptions import (
    AppError,
    ConfigurationError,
    GenerationError,
    GuardViolation,
    ItemBusyError,
    SessionNotFoundError,
    ValidationError,
)
from app.core.gemini_factory import GeminiNotConfiguredError


class TestAppError:
    def test_message_and_detail(self):
        err = AppError("something broke", detail="user-friendly msg")
        assert str(err) == "something broke"
        assert err.detail == "user-friendly msg"

    def test_detail_defaults_to_message(self):
        err = AppError("fallback message")
        assert err.detail == "fallback message"

    def test_inherits_exception(self):
        assert issubclass(AppError, Exception)


class TestDomainExceptions:
    @pytest.mark.parametrize(
        "exc_class",
        [ValidationError, GenerationError, GuardViolation, ConfigurationError, SessionNotFoundError],
    )
    def test_inherits_app_error(self, exc_class):
        assert issubclass(exc_class, AppError)

    def test_item_busy_is_a_validation_error(self):
        err = ItemBusyError("panel", "scene-2")
        assert isinstance(err, ValidationError)
        assert err.kind == "panel"
        assert err.item_id == "scene-2"
        assert "scene-2" in str(err)

    def test_guard_violation_carries_stages(self):
        err = GuardViolation("CHARACTERS", "SCRIPTING", "missing images")
        assert err.from_stage == "CHARACTERS"
        assert err.to_stage == "SCRIPTING"
        assert err.detail == "missing images"
        assert "CHARACTERS" in str(err)

    def test_session_not_found(self):
        session_id = uuid.uuid4()
        err = SessionNotFoundError(session_id)
        assert err.session_id == session_id
        assert err.detail == "session not found"

    def test_gemini_not_configured_is_configuration_error(self):
        err = GeminiNotConfiguredError()
        assert isinstance(err, ConfigurationError)
        assert "GEMINI_API_KEY" in str(err)

    def test_catch_all_app_errors(self):
        with pytest.raises(AppError):
            raise GenerationError("Failed to generate storyline.")
