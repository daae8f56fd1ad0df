from __future__ import annotations

import pytest

from config import TranslatorConfig
from policies.engine import SynthesisError, desired_engine
from resources import GATEWAY_NAME_LABEL, WAFPolicy, engine_name_for
from support import policy_doc


def _policy(**kw) -> WAFPolicy:
    doc = policy_doc(**kw)
    doc["metadata"].setdefault("uid", "1234")
    return WAFPolicy.from_dict(doc)


@pytest.mark.parametrize("name", ["p1", "a", "my.policy", "x" * 200])
def test_engine_name_is_prefixed_policy_name(name) -> None:
    assert engine_name_for(name) == "wafpolicy-" + name
    engine = desired_engine(_policy(name=name), {GATEWAY_NAME_LABEL: "gw"}, TranslatorConfig())
    assert engine.name == "wafpolicy-" + name


def test_engine_document_shape() -> None:
    cfg = TranslatorConfig(default_wasm_image="oci://img:1", default_poll_interval=7)
    policy = _policy(name="p1", namespace="ns", rule_set="crs")
    policy.failure_policy = "allow"

    doc = desired_engine(policy, {GATEWAY_NAME_LABEL: "gw1"}, cfg).to_dict()

    assert doc["apiVersion"] == "waf.k8s.coraza.io/v1alpha1"
    assert doc["kind"] == "Engine"
    assert doc["metadata"]["namespace"] == "ns"
    assert doc["metadata"]["ownerReferences"] == [
        {
            "apiVersion": "waf.k8s.coraza.io/v1alpha1",
            "kind": "WAFPolicy",
            "name": "p1",
            "uid": "1234",
            "controller": True,
            "blockOwnerDeletion": True,
        }
    ]
    assert doc["spec"] == {
        "ruleSet": {"apiVersion": "waf.k8s.coraza.io/v1alpha1", "kind": "RuleSet", "name": "crs"},
        "failurePolicy": "allow",
        "driver": {
            "istio": {
                "wasm": {
                    "image": "oci://img:1",
                    "mode": "gateway",
                    "workloadSelector": {"matchLabels": {GATEWAY_NAME_LABEL: "gw1"}},
                    "ruleSetCacheServer": {"pollIntervalSeconds": 7},
                }
            }
        },
    }


def test_cluster_name_does_not_change_output() -> None:
    policy = _policy()
    a = desired_engine(policy, {GATEWAY_NAME_LABEL: "gw"}, TranslatorConfig(envoy_cluster_name="a"))
    b = desired_engine(policy, {GATEWAY_NAME_LABEL: "gw"}, TranslatorConfig(envoy_cluster_name="b"))
    assert a.to_dict() == b.to_dict()


def test_missing_uid_cannot_be_owned() -> None:
    policy = WAFPolicy.from_dict(policy_doc())
    with pytest.raises(SynthesisError):
        desired_engine(policy, {GATEWAY_NAME_LABEL: "gw"}, TranslatorConfig())


def test_failure_policy_defaults_to_fail() -> None:
    doc = policy_doc()
    del doc["spec"]["failurePolicy"]
    assert WAFPolicy.from_dict(doc).failure_policy == "fail"
