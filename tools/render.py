#!/usr/bin/env python3
"""tools/render.py

Render the Engines the controller would write for a namespace as multi-document YAML.

Usage examples:
  NAMESPACE=default python3 tools/render.py > /tmp/engines.yaml

  # Validate against the API server without persisting:
  NAMESPACE=default python3 tools/render.py | kubectl apply --dry-run=server -f -

Notes:
- This does NOT apply anything.
- Engines are rendered with the same defaults as the controller
  (CORAZA_WASM_IMAGE, ENGINE_POLL_INTERVAL).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from kubernetes import client, config

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import load_settings  # noqa: E402
from k8s import KubeStore  # noqa: E402
from reconcile import render_desired  # noqa: E402


def main() -> int:
    namespace = os.environ.get("NAMESPACE", "default")
    settings = load_settings()

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()

    store = KubeStore(client.CustomObjectsApi(), request_timeout=settings.request_timeout_seconds)
    desired = render_desired(store, namespace, settings.translator)

    try:
        yaml.safe_dump_all(desired, sys.stdout, sort_keys=False)
    except BrokenPipeError:
        # Common when piping to `head`; exit cleanly
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
