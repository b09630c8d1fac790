"""
Schema Validation - JSON Schema (Draft 7) validation utilities.

Used by the desired-state schema to type-check configurations before any
remote call is made.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError, ValidationError

logger = logging.getLogger(__name__)


def validate_json_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a generated schema is a valid Draft 7 JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def format_error_path(error: ValidationError) -> str:
    """Render a jsonschema error location as a dotted path."""
    return ".".join(str(p) for p in error.absolute_path) or "(root)"


def iter_config_errors(
    config: Dict[str, Any], schema: Dict[str, Any]
) -> List[ValidationError]:
    """
    Collect every violation of a schema, ordered by location.

    Args:
        config: The desired configuration to validate
        schema: The JSON Schema to validate against

    Returns:
        List of jsonschema errors (empty when the config is valid).
    """
    validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
    return sorted(
        validator.iter_errors(config),
        key=lambda e: [str(p) for p in e.absolute_path],
    )


def validate_config_against_schema(
    config: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a desired configuration against a JSON Schema.

    Args:
        config: The desired configuration to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message). All violations are joined by "; ".
    """
    errors = iter_config_errors(config, schema)

    if not errors:
        return True, None

    error_messages = [f"{format_error_path(e)}: {e.message}" for e in errors]
    logger.debug(f"Configuration rejected with {len(errors)} error(s)")
    return False, "; ".join(error_messages)
