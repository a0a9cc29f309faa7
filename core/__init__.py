"""Shared core utilities for templating, configuration and command execution."""

from .template import (
    BUILTIN_FUNCTIONS,
    NO_VALUE,
    Template,
    TemplateError,
    TemplateSyntaxError,
    field_references,
    format_value,
    is_true,
)
from .command_runner import (
    CannedResponse,
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .config_loader import (
    FILE_LOADERS,
    fill_mappings,
    load_config_file,
    load_document,
    merge_mappings,
    normalize_string_list,
)

__all__ = [
    "BUILTIN_FUNCTIONS",
    "NO_VALUE",
    "Template",
    "TemplateError",
    "TemplateSyntaxError",
    "field_references",
    "format_value",
    "is_true",
    "CannedResponse",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "FILE_LOADERS",
    "fill_mappings",
    "load_config_file",
    "load_document",
    "merge_mappings",
    "normalize_string_list",
]
