"""buildloop utility modules."""

from .errors import (
    ErrorCategory,
    ErrorInfo,
    classify_exception,
    error_config_invalid,
    error_internal,
    error_plan_file,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)

__all__ = [
    "ErrorCategory",
    "ErrorInfo",
    "format_error",
    "handle_exception",
    "classify_exception",
    "error_plan_file",
    "error_config_invalid",
    "error_internal",
    "set_debug_mode",
    "is_debug_mode",
]
