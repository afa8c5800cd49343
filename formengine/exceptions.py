"""
Custom exception classes for the form engine.

Validation failures are not exceptions: they are reported as field errors and
drive navigation. These classes cover malformed declarations and configuration.
"""

import logging
from typing import Optional, Dict, Any, List
from pathlib import Path

logger = logging.getLogger(__name__)


class FormEngineError(Exception):
    """
    Base exception for form engine errors.

    Attributes:
        message: Error message
        context: Additional context information
        recovery_suggestions: List of suggested recovery actions
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        self.message = message
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def get_full_details(self) -> Dict[str, Any]:
        """Get complete error details including context and suggestions."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'context': self.context,
            'recovery_suggestions': self.recovery_suggestions
        }


class DeclarationError(FormEngineError, ValueError):
    """
    Raised for malformed form declarations.

    Covers items that mix several group shapes and tables without a data source.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        recovery_suggestions = [
            "Give each settings item exactly one of: fields, tabs, accordion, dataTable",
            "Give every dataTable a dataSource",
        ]
        super().__init__(message, context, recovery_suggestions)


class ConfigurationLoadError(FormEngineError):
    """
    Exception raised when a configuration or declaration file cannot be loaded.

    This includes YAML parsing errors, file not found, permission issues, etc.
    """

    def __init__(self, config_path: Path, original_error: Exception,
                 message: Optional[str] = None):
        self.config_path = config_path
        self.original_error = original_error

        if message is None:
            message = f"Failed to load {config_path}: {str(original_error)}"

        context = {
            'config_path': str(config_path),
            'original_error_type': type(original_error).__name__,
            'original_error_message': str(original_error)
        }

        recovery_suggestions = [
            "Check that the file exists and is readable",
            "Verify YAML/JSON syntax is correct",
        ]

        super().__init__(message, context, recovery_suggestions)
