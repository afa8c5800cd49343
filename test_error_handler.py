"""
Unit tests for error_handler module.
"""

import json
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

import formengine.error_handler as error_handler
from formengine.error_handler import (
    ErrorHandler,
    ErrorType,
    get_error_details,
)
from formengine.exceptions import ConfigurationLoadError, DeclarationError


@pytest.fixture
def analytics_log(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "error_analytics.jsonl"
    monkeypatch.setattr(error_handler, 'ANALYTICS_LOG', log_file)
    return log_file


class TestUserFriendlyMessages:
    """Test cases for message selection."""

    def test_declaration_errors(self):
        """Declaration errors point at the form definition."""
        message = ErrorHandler._get_user_friendly_message(DeclarationError("bad"), ErrorType.DECLARATION)
        assert "form declaration is invalid" in message.lower()
        assert "📋" in message

        message = ErrorHandler._get_user_friendly_message(RuntimeError("x"), ErrorType.DECLARATION)
        assert "could not be processed" in message

    def test_configuration_errors(self):
        error = ConfigurationLoadError(Path("config.yaml"), IOError("denied"))
        message = ErrorHandler._get_user_friendly_message(error, ErrorType.CONFIGURATION)
        assert "defaults are in use" in message.lower()

        message = ErrorHandler._get_user_friendly_message(FileNotFoundError("x"), ErrorType.CONFIGURATION)
        assert "could not be found" in message

    def test_validation_errors(self):
        message = ErrorHandler._get_user_friendly_message(ValueError("x"), ErrorType.VALIDATION)
        assert "validation failed" in message.lower()

        message = ErrorHandler._get_user_friendly_message(TypeError("x"), ErrorType.VALIDATION)
        assert "invalid data type" in message.lower()

    def test_render_and_unknown_types(self):
        message = ErrorHandler._get_user_friendly_message(KeyError("x"), ErrorType.RENDER)
        assert message == "🧩 This field could not be displayed."

        message = ErrorHandler._get_user_friendly_message(RuntimeError("x"), "unknown_type")
        assert "system error" in message.lower()


class TestHandleError:
    """Test cases for reporting errors to the page."""

    @patch('formengine.error_handler.st')
    def test_handle_error_displays_message_and_suggestions(self, mock_st, analytics_log):
        ErrorHandler.handle_error(DeclarationError("two shapes"), "loading form", ErrorType.DECLARATION)

        mock_st.error.assert_called_once()
        assert "declaration" in mock_st.error.call_args[0][0]
        assert mock_st.caption.call_count == 2

    @patch('formengine.error_handler.st')
    def test_custom_user_message(self, mock_st, analytics_log):
        ErrorHandler.handle_error(ValueError("x"), "ctx", user_message="Custom message")
        mock_st.error.assert_called_once_with("Custom message")

    @patch('formengine.error_handler.st')
    def test_show_details_opens_expander(self, mock_st, analytics_log):
        ErrorHandler.handle_error(ValueError("x"), "ctx", show_details=True)
        mock_st.expander.assert_called_once()

    @patch('formengine.error_handler.st')
    def test_analytics_are_appended(self, mock_st, analytics_log):
        ErrorHandler.handle_error(ValueError("first"), "ctx one", ErrorType.VALIDATION)
        ErrorHandler.handle_error(DeclarationError("second", context={'table': 'items'}), "ctx two")

        lines = analytics_log.read_text(encoding='utf-8').splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first['error_type'] == 'validation'
        assert first['exception_type'] == 'ValueError'
        assert first['context'] == 'ctx one'
        assert first['details'] == {}
        assert json.loads(lines[1])['details'] == {'table': 'items'}

    @patch('formengine.error_handler.st')
    def test_analytics_write_failure_is_logged(self, mock_st, analytics_log):
        with patch('builtins.open', side_effect=OSError("read-only")):
            ErrorHandler.handle_error(ValueError("x"), "ctx")
        mock_st.error.assert_called_once()


class TestWithErrorHandling:
    """Test cases for with_error_handling."""

    def test_returns_result(self):
        assert ErrorHandler.with_error_handling(lambda: 42, "ctx") == 42

    @patch.object(ErrorHandler, 'handle_error')
    def test_returns_default_on_error(self, mock_handle):
        def boom():
            raise ValueError("nope")

        result = ErrorHandler.with_error_handling(boom, "loading form", ErrorType.DECLARATION,
                                                  default_return='fallback')

        assert result == 'fallback'
        error, context, error_type, user_message = mock_handle.call_args[0]
        assert isinstance(error, ValueError)
        assert context == "loading form"
        assert error_type == ErrorType.DECLARATION
        assert user_message is None


class TestRenderFieldSafely:
    """Test cases for per-field error containment."""

    @patch('formengine.error_handler.st')
    def test_successful_render(self, mock_st):
        render = MagicMock()
        assert ErrorHandler.render_field_safely(render, "Name") is True
        render.assert_called_once()
        mock_st.error.assert_not_called()

    @patch('formengine.error_handler.st')
    def test_failure_shows_inline_error(self, mock_st):
        def broken():
            raise ValueError("Unsupported field type 'slider'")

        assert ErrorHandler.render_field_safely(broken, "Rating", required=True) is False
        mock_st.error.assert_called_once_with("**Rating ***: Unsupported field type 'slider'")

    @patch('formengine.error_handler.st')
    def test_declaration_problems(self, mock_st):
        ErrorHandler.show_declaration_problems([])
        mock_st.expander.assert_not_called()

        ErrorHandler.show_declaration_problems(["a", "b"])
        mock_st.expander.assert_called_once_with("⚠️ Form declaration problems (2)")
        assert mock_st.write.call_count == 2


class TestGetErrorDetails:
    """Test cases for get_error_details."""

    def test_engine_errors_carry_context(self):
        details = get_error_details(DeclarationError("bad", context={'header': 'X'}))
        assert details['error_type'] == 'DeclarationError'
        assert details['context'] == {'header': 'X'}
        assert details['recovery_suggestions']

    def test_plain_exceptions(self):
        details = get_error_details(KeyError('k'))
        assert details['error_type'] == 'KeyError'
        assert details['context'] == {}
