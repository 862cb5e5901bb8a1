"""Turns store write failures into ``store_unavailable`` results."""

import functools
from collections.abc import Awaitable, Callable
from typing import Any

from localite_mfa.core.errors import ConcurrentUpdateError, StoreUnavailableError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.enums import VerificationResult
from localite_mfa.mfa.domain.value_objects import MFAResult

logger = get_logger(__name__)

STORE_UNAVAILABLE_MESSAGE = "Verification service temporarily unavailable, please try again"


def guard_store_errors(
    operation: str,
) -> Callable[[Callable[..., Awaitable[MFAResult]]], Callable[..., Awaitable[MFAResult]]]:
    """Decorate an async ``(self, uid, ...)`` operation returning MFAResult."""

    def decorator(func: Callable[..., Awaitable[MFAResult]]):
        @functools.wraps(func)
        async def wrapper(self: Any, uid: str, *args: Any, **kwargs: Any) -> MFAResult:
            try:
                return await func(self, uid, *args, **kwargs)
            except (StoreUnavailableError, ConcurrentUpdateError) as e:
                logger.error(
                    "MFA operation aborted by store failure",
                    operation=operation,
                    uid=uid,
                    error_code=e.code,
                )
                return MFAResult.fail(
                    VerificationResult.STORE_UNAVAILABLE, STORE_UNAVAILABLE_MESSAGE
                )

        return wrapper

    return decorator
