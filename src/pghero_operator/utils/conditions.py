"""Status condition helpers."""

from datetime import datetime, timezone
from typing import Any, Optional

READY = "Ready"


def utc_now() -> str:
    """Current time in the RFC 3339 form Kubernetes uses for timestamps."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_ready_condition(
    conditions: Optional[list[dict[str, Any]]],
    phase: str,
    message: str,
    now: str,
    observed_generation: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Return ``conditions`` with the single ``Ready`` condition upserted.

    The condition is ``True`` only in the ``Ready`` phase. Its
    ``lastTransitionTime`` moves only when the status value flips.
    """
    status = "True" if phase == READY else "False"
    conditions = conditions or []

    previous = next((c for c in conditions if c.get("type") == READY), None)
    transition_time = now
    if previous is not None and previous.get("status") == status and previous.get("lastTransitionTime"):
        transition_time = previous["lastTransitionTime"]

    condition: dict[str, Any] = {
        "type": READY,
        "status": status,
        "reason": phase,
        "message": message,
        "lastTransitionTime": transition_time,
    }
    if observed_generation is not None:
        condition["observedGeneration"] = observed_generation

    return [dict(c) for c in conditions if c.get("type") != READY] + [condition]
