"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_CONFLICT,
    COND_FAILED,
    COND_PROGRESSING,
    COND_READY,
    REASON_AUTH_FAILURE,
    REASON_CONFLICT,
    REASON_RECONCILED,
    REASON_RECOVERED,
    REASON_RETRIES_EXHAUSTED,
    REASON_TRANSIENT_ERROR,
    REASON_VALIDATION_FAILED,
)

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    if status not in (STATUS_TRUE, STATUS_FALSE, STATUS_UNKNOWN):
        raise ValueError(f"invalid condition status: {status!r}")

    now = datetime.now(timezone.utc).isoformat()

    # Find existing condition
    existing_idx = None
    for idx, cond in enumerate(conditions):
        if cond.get("type") == condition_type:
            existing_idx = idx
            break

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is not None:
        existing = conditions[existing_idx]
        # Only update lastTransitionTime if status changed
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[existing_idx] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def get_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, if any."""
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def is_condition_true(conditions: list[dict[str, Any]], condition_type: str) -> bool:
    """Check whether a condition is present with status True."""
    cond = get_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == STATUS_TRUE


def set_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    message: str,
    observed_generation: int | None = None,
    reason: str | None = None,
) -> list[dict[str, Any]]:
    """Set the Ready condition."""
    return update_condition(
        conditions,
        COND_READY,
        STATUS_TRUE if status else STATUS_FALSE,
        reason or (REASON_RECONCILED if status else "NotReady"),
        message,
        observed_generation,
    )


def set_failed_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Failed condition."""
    return update_condition(
        conditions,
        COND_FAILED,
        STATUS_TRUE,
        REASON_VALIDATION_FAILED,
        message,
        observed_generation,
    )


def clear_failed_condition(
    conditions: list[dict[str, Any]],
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Flip a previously set Failed condition back to False."""
    if is_condition_true(conditions, COND_FAILED):
        update_condition(
            conditions,
            COND_FAILED,
            STATUS_FALSE,
            REASON_RECOVERED,
            "Resource reconciled successfully",
            observed_generation,
        )
    return conditions


def set_auth_failure_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Mark the resource not ready because Vault rejected authentication."""
    return set_ready_condition(conditions, False, message, observed_generation, reason=REASON_AUTH_FAILURE)


def set_transient_error_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set Progressing=False for a retryable failure."""
    return update_condition(
        conditions,
        COND_PROGRESSING,
        STATUS_FALSE,
        REASON_TRANSIENT_ERROR,
        message,
        observed_generation,
    )


def set_progressing_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set Progressing=True after a successful cycle."""
    return update_condition(
        conditions,
        COND_PROGRESSING,
        STATUS_TRUE,
        REASON_RECONCILED,
        message,
        observed_generation,
    )


def set_retries_exhausted_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Mark the resource degraded after the retry cap was reached."""
    return set_ready_condition(
        conditions, False, message, observed_generation, reason=REASON_RETRIES_EXHAUSTED
    )


def set_conflict_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Conflict condition."""
    return update_condition(
        conditions,
        COND_CONFLICT,
        STATUS_TRUE,
        REASON_CONFLICT,
        message,
        observed_generation,
    )


def clear_conflict_condition(
    conditions: list[dict[str, Any]],
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Flip a previously set Conflict condition back to False."""
    if is_condition_true(conditions, COND_CONFLICT):
        update_condition(
            conditions,
            COND_CONFLICT,
            STATUS_FALSE,
            REASON_RECOVERED,
            "Remote object no longer conflicts",
            observed_generation,
        )
    return conditions
