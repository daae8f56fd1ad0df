# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

FALLBACK_WASM_IMAGE = (
    "oci://ghcr.io/networking-incubator/coraza-proxy-wasm:179ea90b2617f557f805fe672daf880c14c6b8b7"
)
DEFAULT_POLL_INTERVAL = 5


@dataclass(frozen=True)
class TranslatorConfig:
    """Operator-level defaults used when translating a WAFPolicy into an Engine.

    These are implementation details that don't belong in the user-facing
    WAFPolicy spec.
    """

    default_wasm_image: str = FALLBACK_WASM_IMAGE
    default_poll_interval: int = DEFAULT_POLL_INTERVAL
    # Reserved: threaded through but not read by the translator yet.
    envoy_cluster_name: str = ""


@dataclass(frozen=True)
class ControllerSettings:
    watch_namespace: str = ""  # "" -> all namespaces
    workers: int = 2
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    translator: TranslatorConfig = TranslatorConfig()


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return float(raw)


def load_settings(env: Optional[Mapping[str, str]] = None) -> ControllerSettings:
    """
    Read controller settings from the environment once, at startup.
    Everything downstream receives the resulting value explicitly.
    """
    env = os.environ if env is None else env

    translator = TranslatorConfig(
        default_wasm_image=env.get("CORAZA_WASM_IMAGE") or FALLBACK_WASM_IMAGE,
        default_poll_interval=_int(env, "ENGINE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
        envoy_cluster_name=env.get("ENVOY_CLUSTER_NAME", ""),
    )

    settings = ControllerSettings(
        watch_namespace=env.get("WATCH_NAMESPACE", ""),
        workers=_int(env, "WORKERS", 2),
        backoff_base_seconds=_float(env, "BACKOFF_BASE_SECONDS", 1.0),
        backoff_max_seconds=_float(env, "BACKOFF_MAX_SECONDS", 60.0),
        request_timeout_seconds=_float(env, "REQUEST_TIMEOUT_SECONDS", 30.0),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        translator=translator,
    )

    if settings.workers < 1:
        raise ValueError(f"WORKERS must be >= 1, got {settings.workers}")
    if translator.default_poll_interval < 1:
        raise ValueError(
            f"ENGINE_POLL_INTERVAL must be >= 1, got {translator.default_poll_interval}"
        )
    if settings.backoff_max_seconds < settings.backoff_base_seconds:
        raise ValueError("BACKOFF_MAX_SECONDS must be >= BACKOFF_BASE_SECONDS")
    return settings
