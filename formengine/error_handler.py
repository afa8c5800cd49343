"""
Error handling utilities for rendering forms in Streamlit.
Provides user-friendly messages, per-field error containment and error analytics.
"""

import streamlit as st
import logging
import traceback
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .exceptions import ConfigurationLoadError, DeclarationError

logger = logging.getLogger(__name__)

ANALYTICS_LOG = Path("logs/error_analytics.jsonl")


class ErrorType:
    """Error type constants."""
    DECLARATION = "declaration"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    RENDER = "render"
    USER_INPUT = "user_input"
    SYSTEM = "system"


class ErrorHandler:
    """Error handling for form rendering and form actions."""

    @staticmethod
    def handle_error(
        error: Exception,
        context: str,
        error_type: str = ErrorType.SYSTEM,
        user_message: Optional[str] = None,
        show_details: bool = False
    ) -> None:
        """
        Handle errors with user-friendly messages.

        Args:
            error: The exception that occurred
            context: Context where the error occurred
            error_type: Type of error (from ErrorType constants)
            user_message: Custom user-friendly message
            show_details: Whether to show technical details
        """
        logger.error(f"Error in {context}: {str(error)}", exc_info=True)

        if not user_message:
            user_message = ErrorHandler._get_user_friendly_message(error, error_type)

        ErrorHandler._display_error(user_message, error, context, show_details)
        ErrorHandler._log_error_analytics(error, context, error_type)

    @staticmethod
    def _get_user_friendly_message(error: Exception, error_type: str) -> str:
        """Generate user-friendly error messages based on error type."""
        error_messages = {
            ErrorType.DECLARATION: {
                DeclarationError: "📋 The form declaration is invalid. Please check the form definition.",
                "default": "📋 The form declaration could not be processed."
            },
            ErrorType.CONFIGURATION: {
                ConfigurationLoadError: "⚙️ A configuration file could not be loaded. Defaults are in use.",
                FileNotFoundError: "📁 The requested file could not be found.",
                "default": "⚙️ Configuration error occurred. Please check config.yaml."
            },
            ErrorType.VALIDATION: {
                ValueError: "✅ Data validation failed. Please check your input and try again.",
                TypeError: "✅ Invalid data type provided. Please ensure data matches expected format.",
                "default": "✅ Validation error occurred. Please review your data and try again."
            },
            ErrorType.RENDER: {
                "default": "🧩 This field could not be displayed."
            },
            ErrorType.USER_INPUT: {
                ValueError: "⚠️ Invalid input provided. Please check your data and try again.",
                "default": "⚠️ Input error. Please review your data and try again."
            },
            ErrorType.SYSTEM: {
                MemoryError: "💻 System is running low on memory. Please try again.",
                "default": "💻 System error occurred. Please try again."
            }
        }

        error_type_messages = error_messages.get(error_type, error_messages[ErrorType.SYSTEM])

        for exception_type, message in error_type_messages.items():
            if exception_type != "default" and isinstance(error, exception_type):
                return message

        return error_type_messages.get("default", "An unexpected error occurred.")

    @staticmethod
    def _display_error(user_message: str, error: Exception, context: str, show_details: bool = False) -> None:
        """Display error message to user."""
        st.error(user_message)

        suggestions = getattr(error, 'recovery_suggestions', None)
        if suggestions:
            for suggestion in suggestions:
                st.caption(f"• {suggestion}")

        if show_details:
            with st.expander("🔍 Technical Details"):
                st.write(f"**Error Type:** {type(error).__name__}")
                st.write(f"**Context:** {context}")
                st.write(f"**Error Message:** {str(error)}")
                st.code(traceback.format_exc())

    @staticmethod
    def _log_error_analytics(error: Exception, context: str, error_type: str) -> None:
        """Append the error to the analytics log."""
        try:
            error_data = {
                'timestamp': datetime.now().isoformat(),
                'error_type': error_type,
                'exception_type': type(error).__name__,
                'context': context,
                'message': str(error),
                'details': get_error_details(error)['context'],
            }

            ANALYTICS_LOG.parent.mkdir(exist_ok=True)
            with open(ANALYTICS_LOG, 'a', encoding='utf-8') as f:
                json.dump(error_data, f, default=str)
                f.write('\n')

        except (IOError, OSError) as e:
            logger.error(f"Failed to log error analytics: {e}")

    @staticmethod
    def with_error_handling(
        func: Callable,
        context: str,
        error_type: str = ErrorType.SYSTEM,
        user_message: Optional[str] = None,
        default_return: Any = None
    ) -> Any:
        """
        Run `func`, reporting any exception instead of letting it end the script run.

        Returns:
            Function result or default_return on error
        """
        try:
            return func()
        except Exception as e:
            ErrorHandler.handle_error(e, context, error_type, user_message)
            return default_return

    @staticmethod
    def render_field_safely(render: Callable[[], Any], label: str, required: bool = False) -> bool:
        """
        Render one field, containing any failure to that field.

        A failing field shows an inline error box with its label; the rest of
        the form keeps rendering.

        Returns:
            True if the field rendered
        """
        try:
            render()
            return True
        except Exception as e:
            logger.error(f"Field '{label}' failed to render: {e}", exc_info=True)
            marker = " *" if required else ""
            st.error(f"**{label}{marker}**: {e}")
            return False

    @staticmethod
    def show_declaration_problems(problems: List[str]) -> None:
        if not problems:
            return
        with st.expander(f"⚠️ Form declaration problems ({len(problems)})"):
            for problem in problems:
                st.write(f"- {problem}")


def get_error_details(error: Exception) -> Dict[str, Any]:
    """Structured details for an exception (FormEngineError subclasses add context)."""
    if hasattr(error, 'get_full_details'):
        return error.get_full_details()
    return {'error_type': type(error).__name__, 'message': str(error), 'context': {}, 'recovery_suggestions': []}
