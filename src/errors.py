"""
Error taxonomy for the form assistant core.

Batch operations (rows, fields, files) log and skip individual failures;
the errors below are what surfaces when a whole operation cannot proceed.
"""

from typing import List, Optional


class FormAssistantError(Exception):
    """Base class for all errors raised by the core."""


class UnsupportedFormatError(FormAssistantError):
    """File extension not handled at an ingestion or extraction boundary."""

    def __init__(self, extension: str, path: Optional[str] = None):
        self.extension = extension
        self.path = path
        super().__init__(f"Unsupported file format: {extension or '(none)'}")


class ValidationError(FormAssistantError):
    """A record failed schema checks. `errors` lists every violation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {', '.join(self.errors)}"
        super().__init__(message)


class TemplateValidationError(ValidationError):
    """A loaded PDF template did not produce a valid template record."""


class ExtractionError(FormAssistantError):
    """Underlying I/O or codec failure while reading a document."""


class UnparsablePDFError(ExtractionError):
    """Every PDF parse attempt failed."""

    def __init__(self, file_name: str, cause: Optional[BaseException] = None):
        self.file_name = file_name
        detail = f" ({cause})" if cause else ""
        super().__init__(
            f"Cannot parse PDF '{file_name}'{detail}. "
            "Please try a different PDF file or create a simple fillable PDF form."
        )


class NotConfiguredError(FormAssistantError):
    """AI capability used before the language-model service was initialized."""


class MalformedAIResponseError(FormAssistantError):
    """Model response did not contain a parseable JSON object."""


class NoOutputDirectoryError(FormAssistantError):
    """Export had no output directory and none was selected."""


class ExportError(FormAssistantError):
    """Writing the filled PDF failed."""
