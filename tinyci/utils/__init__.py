"""
Utility Functions
=================
Common utilities for path validation, schema validation and subprocess setup.
"""

from .validation import (
    validate_identity,
    validate_relative_path,
    is_within,
)

from .schema_validation import (
    validate_against_schema,
    validate_pipeline_config,
    validate_run_history,
)

from .subprocess_env import (
    build_subprocess_env,
    build_git_env,
)

from .subprocess_text import to_text, tail

__all__ = [
    # Validation
    "validate_identity",
    "validate_relative_path",
    "is_within",
    # Schema validation
    "validate_against_schema",
    "validate_pipeline_config",
    "validate_run_history",
    # Subprocess
    "build_subprocess_env",
    "build_git_env",
    "to_text",
    "tail",
]
