# policies/engine.py
from __future__ import annotations

from typing import Dict

from config import TranslatorConfig
from resources import DriverConfig, Engine, ObjectMeta, WAFPolicy, engine_name_for

DRIVER_MODE_GATEWAY = "gateway"


class SynthesisError(ValueError):
    pass


def owner_reference(policy: WAFPolicy) -> Dict:
    if not policy.metadata.uid:
        raise SynthesisError(f"WAFPolicy {policy.key} has no uid; cannot own an Engine")
    return {
        "apiVersion": policy.api_version(),
        "kind": policy.KIND,
        "name": policy.name,
        "uid": policy.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def desired_engine(
    policy: WAFPolicy,
    workload_selector: Dict[str, str],
    cfg: TranslatorConfig,
) -> Engine:
    """
    Build the full desired Engine for a policy.
    Nothing is read from an existing Engine: every field below is recomputed
    on each pass, so edits made to the Engine by hand get overwritten.
    """
    return Engine(
        metadata=ObjectMeta(
            name=engine_name_for(policy.name),
            namespace=policy.namespace,
            owner_references=[owner_reference(policy)],
        ),
        rule_set=policy.rule_set,
        failure_policy=policy.failure_policy,
        driver=DriverConfig(
            image=cfg.default_wasm_image,
            mode=DRIVER_MODE_GATEWAY,
            workload_selector=dict(workload_selector),
            poll_interval_seconds=cfg.default_poll_interval,
        ),
    )
