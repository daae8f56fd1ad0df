# status.py
from __future__ import annotations

import copy
import logging
from typing import Callable, Optional

from conditions import now_rfc3339, remove_condition, set_condition_false, set_condition_true
from k8s import StoreError
from recorder import NORMAL, WARNING
from resources import Engine, WAFPolicy

log = logging.getLogger(__name__)

ACCEPTED = "Accepted"
PROGRAMMED = "Programmed"

REASON_ACCEPTED = "Accepted"
REASON_PROGRAMMED = "Programmed"
REASON_ENGINE_SYNC_FAILED = "EngineSyncFailed"


class StatusProjector:
    """Keeps WAFPolicy.status.conditions in line with the reconcile outcome.

    Only the status subresource is written, as one merge patch carrying the
    whole condition list. Conditions are stamped with the policy generation
    they were computed from.
    """

    def __init__(self, store, recorder, clock: Callable[[], str] = now_rfc3339):
        self.store = store
        self.recorder = recorder
        self.clock = clock

    def not_accepted(self, policy: WAFPolicy, reason: str, message: str) -> WAFPolicy:
        self.recorder.event(policy, WARNING, reason, message)
        before = copy.deepcopy(policy.conditions)
        set_condition_false(policy.conditions, ACCEPTED, reason, message, policy.metadata.generation, self.clock)
        # An unaccepted policy can't be programmed.
        remove_condition(policy.conditions, PROGRAMMED)
        return self._patch(policy, before)

    def programmed(self, policy: WAFPolicy, engine: Engine, operation: str) -> WAFPolicy:
        gen = policy.metadata.generation
        before = copy.deepcopy(policy.conditions)
        set_condition_true(policy.conditions, ACCEPTED, REASON_ACCEPTED, "WAFPolicy is accepted", gen, self.clock)
        set_condition_true(
            policy.conditions,
            PROGRAMMED,
            REASON_PROGRAMMED,
            f'Engine "{engine.name}" {operation}',
            gen,
            self.clock,
        )
        updated = self._patch(policy, before)
        self.recorder.event(
            policy, NORMAL, REASON_PROGRAMMED, f"Engine {engine.namespace}/{engine.name} {operation}"
        )
        return updated

    def sync_failed(self, policy: WAFPolicy, err: Exception) -> Optional[WAFPolicy]:
        """Record an Engine write failure.

        The caller re-raises the original error, so a failure to persist
        this condition is only logged.
        """
        message = f"Failed to create/update Engine: {err}"
        self.recorder.event(policy, WARNING, REASON_ENGINE_SYNC_FAILED, message)
        before = copy.deepcopy(policy.conditions)
        set_condition_false(
            policy.conditions, PROGRAMMED, REASON_ENGINE_SYNC_FAILED, message, policy.metadata.generation, self.clock
        )
        try:
            return self._patch(policy, before)
        except StoreError:
            return None

    def _patch(self, policy: WAFPolicy, before) -> WAFPolicy:
        if before == policy.conditions:
            log.debug("%s: conditions unchanged, skipping status patch", policy.key)
            return policy
        body = {"status": {"conditions": [c.to_dict() for c in policy.conditions]}}
        try:
            return self.store.patch_status(WAFPolicy, policy.namespace, policy.name, body)
        except StoreError as e:
            log.error("%s: failed to patch status: %s", policy.key, e)
            raise
