"""Error handling utilities for the buildloop CLI.

Provides consistent error formatting with:
- Human-friendly messages
- Suggested fixes
- Hidden stack traces (unless debug mode)
"""

from __future__ import annotations

import os
import sys
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from rich.markup import escape

from ..config import ConfigError
from ..plan import PlanFileError

if TYPE_CHECKING:
    from rich.console import Console

# Debug mode enabled by BUILDLOOP_DEBUG=1 or --debug flag
_debug_mode = os.environ.get("BUILDLOOP_DEBUG", "0") == "1"


class ErrorCategory(str, Enum):
    """Categories of errors for consistent formatting."""

    CONFIG = "config"  # Configuration errors
    PLAN = "plan"  # Plan file missing or malformed
    FILE = "file"  # Other file and permission errors
    USAGE = "usage"  # Invalid arguments, unknown versions
    INTERNAL = "internal"  # Internal/unexpected errors


@dataclass
class ErrorInfo:
    """Structured error information for consistent display."""

    message: str
    category: ErrorCategory
    suggestion: str | None = None
    details: str | None = None
    original_error: Exception | None = None


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug_mode() -> bool:
    return _debug_mode


def format_error(error: ErrorInfo, console: Console) -> None:
    """Format and display an error with consistent styling.

    Args:
        error: Structured error information
        console: Rich console for output
    """
    console.print(f"[bold red]Error:[/bold red] {escape(error.message)}")

    if error.details and (_debug_mode or len(error.details) < 200):
        console.print(f"[dim]{escape(error.details)}[/dim]")

    if error.suggestion:
        console.print()
        console.print(f"[yellow]Suggestion:[/yellow] {error.suggestion}")

    if _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Stack trace (debug mode):[/dim]")
        tb_lines = traceback.format_exception(
            type(error.original_error),
            error.original_error,
            error.original_error.__traceback__,
        )
        for line in tb_lines:
            console.print(f"[dim]{escape(line.rstrip())}[/dim]")

    if not _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Set BUILDLOOP_DEBUG=1 or use --debug for more details[/dim]")


def error_plan_file(path: str, message: str, original: Exception | None = None) -> ErrorInfo:
    """Create error info for plan file problems."""
    if "read" in message.lower() and not os.path.exists(path):
        suggestion = "Create the plan file or pass --plan with the correct path"
    else:
        suggestion = "Check that the plan file is a JSON array of units with integer ids"

    return ErrorInfo(
        message=message,
        category=ErrorCategory.PLAN,
        suggestion=suggestion,
        details=f"Plan file: {path}",
        original_error=original,
    )


def error_config_invalid(message: str, original: Exception | None = None) -> ErrorInfo:
    return ErrorInfo(
        message=f"Invalid configuration: {message}",
        category=ErrorCategory.CONFIG,
        suggestion="Run 'buildloop config show' to view current configuration",
        original_error=original,
    )


def error_internal(message: str, original: Exception | None = None) -> ErrorInfo:
    return ErrorInfo(
        message=f"Internal error: {message}",
        category=ErrorCategory.INTERNAL,
        suggestion="This may be a bug; rerun with --debug and report the stack trace",
        original_error=original,
    )


def classify_exception(
    exception: Exception,
    context: str = "operation",
    plan_path: str = "",
) -> ErrorInfo:
    """Classify an exception into an ErrorInfo.

    Args:
        exception: The exception to classify
        context: Description of what was being done
        plan_path: Plan file in use, for plan errors

    Returns:
        ErrorInfo with appropriate categorization
    """
    if isinstance(exception, ConfigError):
        return error_config_invalid(str(exception), exception)

    if isinstance(exception, PlanFileError):
        return error_plan_file(plan_path, str(exception), exception)

    if isinstance(exception, PermissionError):
        return ErrorInfo(
            message=f"Permission denied: {exception}",
            category=ErrorCategory.FILE,
            suggestion="Check file permissions or run with appropriate access",
            original_error=exception,
        )

    if isinstance(exception, OSError):
        return ErrorInfo(
            message=f"{context.capitalize()} failed: {exception}",
            category=ErrorCategory.FILE,
            suggestion="Check the path and ensure the file exists and is writable",
            original_error=exception,
        )

    if isinstance(exception, ValueError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.USAGE,
            suggestion="Run with --help to see valid options",
        )

    return error_internal(f"{context}: {exception}", exception)


def handle_exception(
    console: Console,
    exception: Exception,
    context: str = "operation",
    plan_path: str = "",
    exit_code: int = 1,
) -> None:
    """Display a formatted error and exit."""
    format_error(classify_exception(exception, context, plan_path), console)
    sys.exit(exit_code)
