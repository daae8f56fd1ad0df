# conditions.py
"""Condition list helpers with the usual Kubernetes semantics.

Conditions are keyed by type. Setting a condition whose status is unchanged
keeps its lastTransitionTime and refreshes reason/message/observedGeneration.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from resources import CONDITION_FALSE, CONDITION_TRUE, Condition

log = logging.getLogger(__name__)

READY = "Ready"
DEGRADED = "Degraded"
PROGRESSING = "Progressing"


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_condition(conditions: List[Condition], cond_type: str) -> Optional[Condition]:
    for c in conditions:
        if c.type == cond_type:
            return c
    return None


def set_condition(
    conditions: List[Condition],
    cond_type: str,
    status: str,
    reason: str,
    message: str,
    generation: int,
    clock: Callable[[], str] = now_rfc3339,
) -> bool:
    """Set (or add) a condition in place. Returns True if anything changed."""
    existing = find_condition(conditions, cond_type)
    if existing is None:
        conditions.append(
            Condition(
                type=cond_type,
                status=status,
                reason=reason,
                message=message,
                observed_generation=generation,
                last_transition_time=clock(),
            )
        )
        return True

    changed = False
    if existing.status != status:
        existing.status = status
        existing.last_transition_time = clock()
        changed = True
    if (existing.reason, existing.message, existing.observed_generation) != (reason, message, generation):
        existing.reason = reason
        existing.message = message
        existing.observed_generation = generation
        changed = True
    return changed


def set_condition_true(conditions, cond_type, reason, message, generation, clock=now_rfc3339) -> bool:
    return set_condition(conditions, cond_type, CONDITION_TRUE, reason, message, generation, clock)


def set_condition_false(conditions, cond_type, reason, message, generation, clock=now_rfc3339) -> bool:
    return set_condition(conditions, cond_type, CONDITION_FALSE, reason, message, generation, clock)


def remove_condition(conditions: List[Condition], cond_type: str) -> bool:
    before = len(conditions)
    conditions[:] = [c for c in conditions if c.type != cond_type]
    return len(conditions) != before


# Ready / Degraded / Progressing: exactly one of the three is True at a time.

def set_degraded(conditions, generation, reason, message, clock=now_rfc3339) -> None:
    log.debug("setting degraded status: %s", reason)
    set_condition_false(conditions, READY, reason, message, generation, clock)
    set_condition_true(conditions, DEGRADED, reason, message, generation, clock)
    remove_condition(conditions, PROGRESSING)


def set_progressing(conditions, generation, reason, message, clock=now_rfc3339) -> None:
    log.debug("setting progressing status: %s", reason)
    set_condition_false(conditions, READY, reason, message, generation, clock)
    set_condition_true(conditions, PROGRESSING, reason, message, generation, clock)
    remove_condition(conditions, DEGRADED)


def set_ready(conditions, generation, reason, message, clock=now_rfc3339) -> None:
    log.debug("setting ready status: %s", reason)
    set_condition_true(conditions, READY, reason, message, generation, clock)
    remove_condition(conditions, DEGRADED)
    remove_condition(conditions, PROGRESSING)
