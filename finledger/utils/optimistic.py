"""
FinLedger - Optimistic Concurrency

Single compare-and-swap primitive used for every balance correction.
The store performs the conditional write; this helper turns a lost race
into ConcurrentUpdateConflict.
"""

import logging
from typing import Any, Awaitable, Callable
from uuid import UUID

from finledger.utils.error_handling import ConcurrentUpdateConflict

logger = logging.getLogger(__name__)


async def compare_and_swap(
    conditional_write: Callable[[UUID, int, Any], Awaitable[bool]],
    resource_id: UUID,
    expected_version: int,
    new_value: Any,
) -> None:
    """
    Apply new_value only if the stored version still equals expected_version.

    Args:
        conditional_write: Store method performing the guarded write; returns
            False when no row matched the expected version
        resource_id: Identifier of the record being written
        expected_version: Version token read before computing new_value
        new_value: Replacement value

    Raises:
        ConcurrentUpdateConflict: the version changed since it was read
    """
    applied = await conditional_write(resource_id, expected_version, new_value)
    if not applied:
        logger.warning(
            f"Version conflict on {resource_id}: expected version {expected_version} no longer current"
        )
        raise ConcurrentUpdateConflict(resource_id, expected_version=expected_version)
