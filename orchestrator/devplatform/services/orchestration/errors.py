"""
Error taxonomy for cluster orchestration.

Every failure coming out of the Kubernetes API is normalized once, at the
client boundary, into one of four kinds:

- not_found: the object does not exist (benign for deletes, a valid health
  observation)
- conflict: the object already exists (benign for creates)
- transient: not visible / not ready yet, handled by bounded retry or poll
- fatal: everything else, propagated with namespace / resource context

Best-effort side effects (proxy restarts, audit writes) go through
`best_effort`, which logs failures and never raises.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, List, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    FATAL = "fatal"


class OrchestrationError(Exception):
    """Base class for all orchestration failures."""

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        resource: Optional[str] = None,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.namespace = namespace
        self.resource = resource
        self.cause = cause
        self.status_code = status_code

    def __str__(self) -> str:
        context = "/".join(part for part in (self.namespace, self.resource) if part)
        return f"{self.message} [{context}]" if context else self.message


class ResourceNotFoundError(OrchestrationError):
    kind = ErrorKind.NOT_FOUND


class ResourceConflictError(OrchestrationError):
    kind = ErrorKind.CONFLICT


class TransientNotReadyError(OrchestrationError):
    kind = ErrorKind.TRANSIENT


class ProvisioningTimeoutError(OrchestrationError):
    """A bounded poll or retry ran out before the cluster converged."""


class KubernetesError(OrchestrationError):
    """Hard API failure (permissions, validation, server errors)."""


class TeardownError(OrchestrationError):
    """One or more deletions failed; `failures` holds every (resource, error) pair."""

    def __init__(self, message: str, failures: List[tuple], namespace: Optional[str] = None):
        first_resource, first_error = failures[0]
        super().__init__(message, namespace=namespace, resource=first_resource, cause=first_error)
        self.failures = failures


# Transient statuses the API server returns while it catches up
_TRANSIENT_STATUSES = {429, 503, 504}


def status_code_of(exc: BaseException) -> Optional[int]:
    """
    Extract an HTTP status code from an API exception.

    Different client layers report it in different places; all of them are
    checked here so nothing else has to.

    Lookup order: `exc.status`, `exc.response.status`,
    `exc.response.status_code`, `exc.code`.
    """
    candidates: List[Any] = [getattr(exc, "status", None)]
    response = getattr(exc, "response", None)
    if response is not None:
        candidates.append(getattr(response, "status", None))
        candidates.append(getattr(response, "status_code", None))
    candidates.append(getattr(exc, "code", None))

    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, OrchestrationError):
        return exc.kind
    status = status_code_of(exc)
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 409:
        return ErrorKind.CONFLICT
    if status in _TRANSIENT_STATUSES:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_not_found(exc: BaseException) -> bool:
    return classify(exc) == ErrorKind.NOT_FOUND


def is_conflict(exc: BaseException) -> bool:
    return classify(exc) == ErrorKind.CONFLICT


def translate_api_exception(
    exc: BaseException,
    action: str,
    namespace: Optional[str] = None,
    resource: Optional[str] = None,
) -> OrchestrationError:
    """Map a raw client exception onto the taxonomy, keeping it as the cause."""
    if isinstance(exc, OrchestrationError):
        return exc

    status = status_code_of(exc)
    reason = getattr(exc, "reason", None) or str(exc)
    message = f"Failed to {action}: {reason}"
    kind = classify(exc)

    if kind == ErrorKind.NOT_FOUND:
        error_cls = ResourceNotFoundError
    elif kind == ErrorKind.CONFLICT:
        error_cls = ResourceConflictError
    elif kind == ErrorKind.TRANSIENT:
        error_cls = TransientNotReadyError
    else:
        error_cls = KubernetesError

    return error_cls(message, namespace=namespace, resource=resource, cause=exc, status_code=status)


async def best_effort(awaitable: Awaitable, what: str) -> bool:
    """
    Await a side effect whose failure must not fail the caller.

    Returns:
        True if it completed, False if it raised (the error is logged)
    """
    try:
        await awaitable
        return True
    except Exception as e:
        logger.warning(f"Best-effort step failed ({what}): {e}")
        return False
