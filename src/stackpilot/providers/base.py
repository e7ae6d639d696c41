"""Provider error classification and shared helpers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Mapping

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from stackpilot.core.errors import ConfigurationError, ProviderError

TRANSIENT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "RequestThrottled",
        "RequestTimeout",
        "RequestTimeoutException",
        "ServiceUnavailable",
        "InternalError",
        "InternalFailure",
        "SlowDown",
        "PriorRequestNotComplete",
        "EC2ThrottledException",
        "IncorrectInstanceState",
        "InvalidDBInstanceState",
    }
)

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_NETWORK_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


def classify_aws_error(exc: Exception, operation: str) -> ProviderError:
    """Map a botocore failure to a transient or permanent ProviderError."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "Unknown")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        transient = code in TRANSIENT_ERROR_CODES or status in TRANSIENT_STATUS_CODES
        return ProviderError(
            f"{operation} failed: {code}: {error.get('Message', '')}".rstrip(": "),
            transient=transient,
            details={"operation": operation, "code": code},
        )
    if isinstance(exc, _NETWORK_ERRORS):
        return ProviderError.transient_error(f"{operation} failed: {exc}", operation=operation)
    return ProviderError.permanent_error(f"{operation} failed: {exc}", operation=operation)


@asynccontextmanager
async def aws_errors(operation: str) -> AsyncIterator[None]:
    """Translate botocore exceptions raised inside the block."""
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise classify_aws_error(e, operation) from e


@asynccontextmanager
async def created(provider_id: str) -> AsyncIterator[None]:
    """Attach the identity of an already created resource to failures inside the block."""
    try:
        yield
    except ProviderError as e:
        e.provider_id = provider_id
        raise


def error_code(exc: ProviderError) -> str | None:
    return exc.details.get("code")


def require(config: Mapping[str, Any], key: str, kind: str) -> Any:
    value = config.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"{kind} requires '{key}'", details={"kind": kind, "key": key})
    return value


def map_params(config: Mapping[str, Any], mapping: Mapping[str, str]) -> Dict[str, Any]:
    """Translate snake_case manifest keys into API parameter names, skipping absent ones."""
    return {param: config[key] for key, param in mapping.items() if config.get(key) is not None}


def tag_list(tags: Mapping[str, Any] | None) -> list[dict[str, str]]:
    return [{"Key": str(k), "Value": str(v)} for k, v in (tags or {}).items()]


def tag_specifications(resource_type: str, tags: Mapping[str, Any] | None) -> Dict[str, Any]:
    """``TagSpecifications`` keyword for EC2 create calls, empty without tags."""
    if not tags:
        return {}
    return {"TagSpecifications": [{"ResourceType": resource_type, "Tags": tag_list(tags)}]}
