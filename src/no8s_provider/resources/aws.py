"""
AWS helpers shared by the built-in resource types.

Translates botocore errors into the provider error taxonomy and converts
between schema attribute values (snake_case, blocks as lists) and SDK wire
shapes (api_name keys, single-item blocks as objects).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from no8s_provider.errors import (
    ConflictError,
    NotFoundError,
    ProviderError,
    RetryableError,
    ValidationError,
)
from no8s_provider.schema import AttributeType, Block, is_present

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {
    "NotFoundException",
    "ResourceNotFoundException",
    "ResourceNotFound",
    "NoSuchEntity",
}

RETRYABLE_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalFailure",
    "InternalServerError",
    "InternalError",
    "RequestTimeout",
    "RequestTimeoutException",
}

CONFLICT_CODES = {
    "ConflictException",
    "ResourceInUse",
    "ResourceInUseException",
    "ResourceLimitExceeded",
    "LimitExceededException",
    "PreconditionFailed",
}

VALIDATION_CODES = {
    "ValidationException",
    "ArgumentException",
    "InvalidParameterException",
    "InvalidParameterValue",
}


def classify_client_error(
    error: ClientError, not_found_messages: Sequence[str] = ()
) -> ProviderError:
    """
    Map a botocore ClientError onto the provider error taxonomy.

    Args:
        error: The error raised by the SDK.
        not_found_messages: Message fragments that mean "not found" for
            services that report missing objects with a generic code.

    Returns:
        The provider error to raise.
    """
    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = details.get("Message", "") or str(error)
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    text = f"{code}: {message}" if code else message

    if code in NOT_FOUND_CODES or any(m in message for m in not_found_messages):
        return NotFoundError(text)
    if code in RETRYABLE_CODES or status >= 500:
        return RetryableError(text)
    if code in CONFLICT_CODES:
        return ConflictError(text)
    if code in VALIDATION_CODES:
        return ValidationError(text)
    return ProviderError(text)


@contextmanager
def translate_errors(not_found_messages: Sequence[str] = ()) -> Iterator[None]:
    """Re-raise SDK errors raised inside the block as provider errors."""
    try:
        yield
    except ClientError as e:
        raise classify_client_error(e, not_found_messages) from e
    except (BotoConnectionError, HTTPClientError) as e:
        raise RetryableError(f"transport error: {e}") from e


def _expand_scalar(attribute_type: AttributeType, value: Any) -> Any:
    if attribute_type == AttributeType.INTEGER:
        return int(value)
    if attribute_type == AttributeType.NUMBER:
        return float(value)
    return value


def expand(block: Block, values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build an SDK request fragment from attribute values.

    Attributes without an api_name, computed attributes and unset values
    are left out.
    """
    api: Dict[str, Any] = {}
    for attribute in block:
        if attribute.api_name is None or attribute.is_computed_only:
            continue
        value = values.get(attribute.name)
        if value is None:
            continue
        if attribute.type != AttributeType.BOOLEAN and not is_present(value):
            continue

        if attribute.type == AttributeType.BLOCK:
            items = [expand(attribute.block, item) for item in value]
            api[attribute.api_name] = items[0] if attribute.max_items == 1 else items
        elif attribute.type in (AttributeType.LIST, AttributeType.SET):
            api[attribute.api_name] = [
                _expand_scalar(attribute.element_type, v) for v in value
            ]
        elif attribute.type == AttributeType.MAP:
            api[attribute.api_name] = dict(value)
        else:
            api[attribute.api_name] = _expand_scalar(attribute.type, value)
    return api


def flatten(block: Block, api: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build attribute values from an SDK response fragment.

    Booleans missing from the response take their declared default, since
    services commonly omit false flags.
    """
    values: Dict[str, Any] = {}
    for attribute in block:
        if attribute.api_name is None:
            continue
        raw = api.get(attribute.api_name)
        if raw is None:
            is_boolean = attribute.type == AttributeType.BOOLEAN
            if is_boolean and attribute.default is not None:
                values[attribute.name] = attribute.default
            continue

        if attribute.type == AttributeType.BLOCK:
            items = [raw] if isinstance(raw, dict) else raw
            values[attribute.name] = [flatten(attribute.block, item) for item in items]
        elif attribute.type in (AttributeType.LIST, AttributeType.SET):
            values[attribute.name] = list(raw)
        elif attribute.type == AttributeType.MAP:
            values[attribute.name] = dict(raw)
        else:
            values[attribute.name] = raw
    return values


def tags_to_list(tags: Optional[Dict[str, str]]) -> List[Dict[str, str]]:
    """Convert a tag map to the SDK's Key/Value list."""
    return [{"Key": k, "Value": v} for k, v in sorted((tags or {}).items())]


def list_to_tags(tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """Convert the SDK's Key/Value list to a tag map."""
    return {t["Key"]: t.get("Value", "") for t in tags or []}
