# targets.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict

from k8s import NotFoundError
from resources import GATEWAY_NAME_LABEL, Gateway, HTTPRoute, WAFPolicy

log = logging.getLogger(__name__)

REASON_TARGET_NOT_FOUND = "TargetNotFound"
REASON_NO_PARENT_GATEWAY = "NoParentGateway"
REASON_INVALID_PARENT_REF = "InvalidParentRef"
REASON_INVALID_TARGET_REF = "InvalidTargetRef"


@dataclass
class Resolution:
    """Outcome of resolving a policy's targetRef.

    ok=True carries the workload selector; otherwise reason/message explain
    why the policy can't be accepted and requeue says whether waiting could
    change the answer.
    """

    ok: bool
    workload_selector: Dict[str, str] = field(default_factory=dict)
    reason: str = ""
    message: str = ""
    requeue: bool = False


def _accepted(gateway_name: str) -> Resolution:
    return Resolution(
        ok=True,
        workload_selector={GATEWAY_NAME_LABEL: gateway_name},
    )


def _rejected(reason: str, message: str, requeue: bool = False) -> Resolution:
    return Resolution(ok=False, reason=reason, message=message, requeue=requeue)


def resolve_gateway(store, policy: WAFPolicy) -> Resolution:
    name = policy.target_ref.name
    try:
        store.get(Gateway, policy.namespace, name)
    except NotFoundError:
        log.info("%s: target Gateway %s not found", policy.key, name)
        return _rejected(REASON_TARGET_NOT_FOUND, f'Gateway "{name}" not found', requeue=True)
    return _accepted(name)


def resolve_httproute(store, policy: WAFPolicy) -> Resolution:
    name = policy.target_ref.name
    try:
        route = store.get(HTTPRoute, policy.namespace, name)
    except NotFoundError:
        log.info("%s: target HTTPRoute %s not found", policy.key, name)
        return _rejected(REASON_TARGET_NOT_FOUND, f'HTTPRoute "{name}" not found', requeue=True)

    if not route.parent_refs:
        return _rejected(REASON_NO_PARENT_GATEWAY, f'HTTPRoute "{name}" has no parentRefs')

    first = route.parent_refs[0]
    if not isinstance(first, dict):
        return _rejected(REASON_INVALID_PARENT_REF, f'HTTPRoute "{name}" has invalid parentRef')

    gateway_name = first.get("name")
    if not isinstance(gateway_name, str) or not gateway_name:
        return _rejected(REASON_INVALID_PARENT_REF, f'HTTPRoute "{name}" parentRef has no gateway name')

    log.debug("%s: resolved HTTPRoute %s parent gateway %s", policy.key, name, gateway_name)
    return _accepted(gateway_name)


RESOLVERS = {
    Gateway.KIND: resolve_gateway,
    HTTPRoute.KIND: resolve_httproute,
}


def resolve_target(store, policy: WAFPolicy) -> Resolution:
    """Resolve policy.targetRef into the workload selector for its Engine.

    Store failures other than not-found propagate as StoreError.
    """
    kind = policy.target_ref.kind
    resolver = RESOLVERS.get(kind)
    if resolver is None:
        return _rejected(REASON_INVALID_TARGET_REF, f"Unsupported targetRef kind: {kind}")
    return resolver(store, policy)
