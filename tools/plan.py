#!/usr/bin/env python3
"""Plan-only runner: prints what the controller would reconcile without applying changes.

Usage:
  NAMESPACE=default python3 tools/plan.py

Notes:
- Uses your local kubeconfig (same behavior as app.py).
- Does not create/update/delete any objects.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from kubernetes import client, config

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import load_settings  # noqa: E402
from k8s import KubeStore  # noqa: E402
from reconcile import plan_reconcile, print_plan  # noqa: E402


def main() -> None:
    namespace = os.environ.get("NAMESPACE", "default")
    settings = load_settings()

    try:
        config.load_incluster_config()
        print("[plan] using in-cluster config")
    except config.ConfigException:
        config.load_kube_config()
        print("[plan] using kubeconfig (local)")

    store = KubeStore(client.CustomObjectsApi(), request_timeout=settings.request_timeout_seconds)
    plan = plan_reconcile(store, namespace, settings.translator)
    print_plan(plan)


if __name__ == "__main__":
    main()
