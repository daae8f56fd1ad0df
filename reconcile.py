# reconcile.py
"""WAFPolicy -> Engine reconciliation.

One pass is level-triggered: it reads the current policy and target, then
recomputes and writes the full desired Engine and condition set. Running it
again against an unchanged cluster converges to the same result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from conditions import now_rfc3339
from config import TranslatorConfig
from k8s import (
    NotFoundError,
    StoreError,
    create_or_update,
    ensure_finalizer,
    has_finalizer,
    remove_finalizer,
)
from policies.engine import SynthesisError, desired_engine
from resources import Engine, WAFPolicy, engine_name_for
from status import REASON_ENGINE_SYNC_FAILED, StatusProjector
from targets import Resolution, resolve_target
from workqueue import split_key

log = logging.getLogger(__name__)


@dataclass
class Result:
    requeue: bool = False
    requeue_after: Optional[float] = None


class Reconciler:
    def __init__(self, store, recorder, cfg: TranslatorConfig, clock: Callable[[], str] = now_rfc3339):
        self.store = store
        self.recorder = recorder
        self.cfg = cfg
        self.status = StatusProjector(store, recorder, clock)

    def reconcile(self, key: str) -> Result:
        """Run one pass for the policy at key ("namespace/name").

        Store failures raise StoreError (ConflictError included) and are
        meant to be retried with backoff by the caller. An object vanishing
        mid-pass ends the pass successfully.
        """
        namespace, name = split_key(key)
        log.debug("%s: starting reconciliation", key)
        try:
            return self._reconcile(namespace, name)
        except NotFoundError as e:
            log.debug("%s: object disappeared during reconcile: %s", key, e)
            return Result()

    def _reconcile(self, namespace: str, name: str) -> Result:
        policy = self.store.get(WAFPolicy, namespace, name)

        if policy.metadata.deletion_timestamp:
            return self._handle_deletion(policy)

        if not has_finalizer(policy):
            policy = ensure_finalizer(self.store, policy)

        resolution = resolve_target(self.store, policy)
        if not resolution.ok:
            self.status.not_accepted(policy, resolution.reason, resolution.message)
            return Result(requeue=resolution.requeue)

        return self._ensure_engine(policy, resolution)

    def _ensure_engine(self, policy: WAFPolicy, resolution: Resolution) -> Result:
        try:
            engine = desired_engine(policy, resolution.workload_selector, self.cfg)
        except SynthesisError as e:
            self.status.not_accepted(policy, REASON_ENGINE_SYNC_FAILED, str(e))
            return Result()

        try:
            operation = create_or_update(self.store, engine)
        except NotFoundError:
            raise
        except StoreError as e:
            log.error("%s: failed to ensure Engine %s: %s", policy.key, engine.name, e)
            self.status.sync_failed(policy, e)
            raise

        log.info("%s: Engine %s %s", policy.key, engine.name, operation)
        self.status.programmed(policy, engine, operation)
        return Result()

    def _handle_deletion(self, policy: WAFPolicy) -> Result:
        if not has_finalizer(policy):
            return Result()

        if not self.store.supports_owner_gc:
            # No ownerReference GC behind this store: drop the Engine ourselves
            # before letting the policy go.
            try:
                self.store.delete(Engine, policy.namespace, engine_name_for(policy.name))
            except NotFoundError:
                pass

        log.info("%s: removing finalizer", policy.key)
        remove_finalizer(self.store, policy)
        return Result()


# ─────────────────────────────────────────────
# Planning (read-only)
# ─────────────────────────────────────────────
class ReconcilePlan(dict):
    """A small, json-serializable planning object."""


def plan_reconcile(store, namespace: str, cfg: TranslatorConfig) -> ReconcilePlan:
    """Compute what a pass over every policy in namespace *would* do, without writing."""
    entries = []
    counts = {"create": 0, "update": 0, "unchanged": 0, "rejected": 0}

    for policy in sorted(store.list(WAFPolicy, namespace), key=lambda p: p.name):
        entry = {"policy": policy.name, "engine": engine_name_for(policy.name)}
        resolution = resolve_target(store, policy)
        if not resolution.ok:
            entry.update(action="rejected", reason=resolution.reason, message=resolution.message)
        else:
            try:
                engine = desired_engine(policy, resolution.workload_selector, cfg)
            except SynthesisError as e:
                entry.update(action="rejected", reason=REASON_ENGINE_SYNC_FAILED, message=str(e))
            else:
                try:
                    current = store.get(Engine, namespace, engine.name)
                except NotFoundError:
                    entry["action"] = "create"
                else:
                    same = current.spec_dict() == engine.spec_dict()
                    entry["action"] = "unchanged" if same else "update"
        counts[entry["action"]] += 1
        entries.append(entry)

    return ReconcilePlan(namespace=namespace, counts=counts, policies=entries)


def print_plan(plan: ReconcilePlan) -> None:
    ns = plan.get("namespace")
    counts = plan.get("counts", {})
    summary = " ".join(f"{k}={v}" for k, v in counts.items())
    print(f"[plan] namespace={ns} {summary}")
    for entry in plan.get("policies", []):
        line = f"  - {entry['policy']} -> {entry['engine']}: {entry['action']}"
        if entry["action"] == "rejected":
            line += f" ({entry['reason']}: {entry['message']})"
        print(line)


def render_desired(store, namespace: str, cfg: TranslatorConfig) -> List[dict]:
    """Desired Engine documents for every resolvable policy in namespace."""
    out = []
    for policy in sorted(store.list(WAFPolicy, namespace), key=lambda p: p.name):
        resolution = resolve_target(store, policy)
        if not resolution.ok:
            continue
        try:
            out.append(desired_engine(policy, resolution.workload_selector, cfg).to_dict())
        except SynthesisError as e:
            log.warning("%s: skipped: %s", policy.key, e)
    return out
