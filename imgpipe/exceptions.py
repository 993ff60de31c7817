"""imgpipe exceptions."""

from typing import List
from dataclasses import dataclass


@dataclass
class ValidationError:
    """Single validation error."""
    message: str
    path: str = ""
    exit_code: int = 2


class LoadError(Exception):
    """Raised when a workflow or preset cannot be loaded or merged.

    The loader collects every problem it finds before raising, so the CLI can
    report them all at once and map to the validation exit code.
    """

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        self.exit_code = 2

        messages = []
        for error in errors:
            if error.path:
                messages.append(f"Load error ({error.path}): {error.message}")
            else:
                messages.append(f"Load error: {error.message}")

        super().__init__("\n".join(messages))

    @classmethod
    def single(cls, message: str, path: str = "") -> "LoadError":
        return cls([ValidationError(message, path)])


class InvalidExpressionError(ValueError):
    """Base class for bad condition, range or template text."""
    exit_code = 2


class ConditionError(InvalidExpressionError):
    """Condition expression outside the supported grammar."""


class RangeSpecError(InvalidExpressionError):
    """Malformed page/item range specification."""


class TemplateError(InvalidExpressionError):
    """Unsupported placeholder format spec."""


class StepTimeoutError(Exception):
    """A step exceeded its wall-clock budget."""

    def __init__(self, timeout_sec: float):
        self.timeout_sec = timeout_sec
        super().__init__(f"Step timed out after {timeout_sec} seconds")


class HandlerError(Exception):
    """One item of a step could not be processed."""


class PresetError(Exception):
    """A preset could not be created, deleted, exported or imported."""
    exit_code = 1
