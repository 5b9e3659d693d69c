"""
Schema Validation Utilities
===========================
JSON Schema loading and validation helpers.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import ValidationError


@lru_cache(maxsize=32)
def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """Load a schema JSON file from tinyci/schemas.

    Args:
        schema_filename: File name under tinyci/schemas (for example 'run_history.schema.json').

    Raises:
        FileNotFoundError: When schema file is missing.
        ValueError: When schema file is not valid JSON or not a JSON object.
    """
    schemas_dir = Path(__file__).resolve().parent.parent / "schemas"
    schema_path = (schemas_dir / schema_filename).resolve()
    if not schema_path.is_relative_to(schemas_dir.resolve()):
        raise ValueError(f"Schema path escapes schemas directory: {schema_filename}")
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_filename}")

    try:
        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load schema {schema_filename}: {e}")

    if not isinstance(schema, dict):
        raise ValueError(f"Schema {schema_filename} must be a JSON object")
    return schema


def validate_against_schema(payload: Any, schema_filename: str) -> None:
    """Validate payload against a JSON Schema.

    Args:
        payload: Any JSON-serializable object.
        schema_filename: File name under tinyci/schemas.

    Raises:
        ValueError: When payload fails validation.
    """
    schema = _load_schema(schema_filename)
    validator = Draft202012Validator(schema, format_checker=FormatChecker())

    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
    if not errors:
        return

    error: ValidationError = errors[0]
    path = "/".join(str(p) for p in error.path)
    prefix = f"Validation failed at '{path}': " if path else "Validation failed: "
    raise ValueError(prefix + error.message)


def validate_pipeline_config(payload: Dict[str, Any]) -> None:
    """Validate a pipeline config document.

    Uses tinyci/schemas/pipeline_config.schema.json, then checks the
    constraints JSON Schema cannot express.
    """
    validate_against_schema(payload, "pipeline_config.schema.json")
    _validate_pipeline_identities(payload)


def _validate_pipeline_identities(payload: Dict[str, Any]) -> None:
    """Each pipeline names exactly one identity key and identities are unique."""
    seen: set[str] = set()
    for idx, pipeline in enumerate(payload.get("pipelines", [])):
        has_domain = "domain" in pipeline
        has_package = "package" in pipeline
        if has_domain and has_package:
            raise ValueError(
                f"Validation failed at 'pipelines/{idx}': use either 'domain' or 'package', not both"
            )
        identity = pipeline.get("domain") if has_domain else pipeline.get("package")
        if identity in seen:
            raise ValueError(f"Validation failed at 'pipelines/{idx}': duplicate pipeline identity {identity!r}")
        seen.add(identity)


def validate_run_history(payload: Dict[str, Any]) -> None:
    """Validate a persisted run history document.

    Uses tinyci/schemas/run_history.schema.json.
    """
    validate_against_schema(payload, "run_history.schema.json")
