# src/algodid/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from algodid.ledger.constants import DEFAULT_GROUP_SIZE, DEFAULT_WAIT_ROUNDS, MAX_GROUP_SIZE

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class StoreConfig:
    mode: str  # "dev" | "testnet" | "prod"

    # Program instance the store talks to (0 = deploy a fresh one on boot).
    app_id: int

    # Chunk-writes per transaction group (<= MAX_GROUP_SIZE).
    group_size: int

    # Group submission retry policy.
    max_attempts: int
    backoff_ms: int
    backoff_cap_ms: int
    wait_rounds: int

    # Concurrent cell uploads / reads.
    max_workers: int

    # Read every cell back from the ledger before finalize.
    verify_remote: bool

    # Hex Ed25519 seed of the operator account (empty = generate).
    operator_seed: str

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}

_ENV_KEYS = {
    "mode": "ALGODID_MODE",
    "app_id": "ALGODID_APP_ID",
    "group_size": "ALGODID_GROUP_SIZE",
    "max_attempts": "ALGODID_MAX_ATTEMPTS",
    "backoff_ms": "ALGODID_BACKOFF_MS",
    "backoff_cap_ms": "ALGODID_BACKOFF_CAP_MS",
    "wait_rounds": "ALGODID_WAIT_ROUNDS",
    "max_workers": "ALGODID_MAX_WORKERS",
    "verify_remote": "ALGODID_VERIFY_REMOTE",
    "operator_seed": "ALGODID_OPERATOR_SEED",
    "log_level": "ALGODID_LOG_LEVEL",
}


def validate_store_config(cfg: StoreConfig) -> None:
    """Fail-fast validation so a misconfigured store never talks to a ledger."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if int(cfg.app_id) < 0:
        raise ValueError(f"app_id must be >= 0; got: {cfg.app_id}")

    if not (1 <= int(cfg.group_size) <= MAX_GROUP_SIZE):
        raise ValueError(f"group_size must be 1..{MAX_GROUP_SIZE}; got: {cfg.group_size}")

    if int(cfg.max_attempts) < 1:
        raise ValueError(f"max_attempts must be >= 1; got: {cfg.max_attempts}")

    if int(cfg.backoff_ms) < 0 or int(cfg.backoff_cap_ms) < int(cfg.backoff_ms):
        raise ValueError("backoff_ms must be >= 0 and <= backoff_cap_ms")

    if int(cfg.wait_rounds) < 1:
        raise ValueError(f"wait_rounds must be >= 1; got: {cfg.wait_rounds}")

    if int(cfg.max_workers) < 1:
        raise ValueError(f"max_workers must be >= 1; got: {cfg.max_workers}")

    seed = str(cfg.operator_seed or "").strip()
    if seed:
        try:
            raw = bytes.fromhex(seed)
        except ValueError as e:
            raise ValueError("operator_seed must be hex") from e
        if len(raw) not in (32, 64):
            raise ValueError("operator_seed must be a 32-byte seed (or 64-byte expanded key)")
    elif mode == "prod":
        raise ValueError("operator_seed is required in prod mode")


def default_store_config() -> StoreConfig:
    return StoreConfig(
        mode="dev",
        app_id=0,
        group_size=DEFAULT_GROUP_SIZE,
        max_attempts=3,
        backoff_ms=500,
        backoff_cap_ms=10_000,
        wait_rounds=DEFAULT_WAIT_ROUNDS,
        max_workers=8,
        verify_remote=False,
        operator_seed="",
        log_level="INFO",
    )


def _coerce(raw: Json, base: StoreConfig) -> StoreConfig:
    return StoreConfig(
        mode=_as_str(raw.get("mode"), base.mode).strip().lower(),
        app_id=_as_int(raw.get("app_id"), base.app_id),
        group_size=_as_int(raw.get("group_size"), base.group_size),
        max_attempts=_as_int(raw.get("max_attempts"), base.max_attempts),
        backoff_ms=_as_int(raw.get("backoff_ms"), base.backoff_ms),
        backoff_cap_ms=_as_int(raw.get("backoff_cap_ms"), base.backoff_cap_ms),
        wait_rounds=_as_int(raw.get("wait_rounds"), base.wait_rounds),
        max_workers=_as_int(raw.get("max_workers"), base.max_workers),
        verify_remote=_as_bool(raw.get("verify_remote"), base.verify_remote),
        operator_seed=_as_str(raw.get("operator_seed"), base.operator_seed).strip(),
        log_level=_as_str(raw.get("log_level"), base.log_level).strip().upper(),
    )


def read_store_config_file(path: str, base: Optional[StoreConfig] = None) -> StoreConfig:
    """Read a JSON or YAML (by extension) config file over `base` defaults."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("store config must be a mapping")
    return _coerce(raw, base or default_store_config())


def _env_overrides() -> Json:
    out: Json = {}
    for name, key in _ENV_KEYS.items():
        v = os.environ.get(key)
        if v is not None and v.strip():
            out[name] = v
    return out


def load_store_config(*, config_path: Optional[str] = None) -> StoreConfig:
    """Defaults, then the config file (if any), then ALGODID_* env overrides."""
    cfg = default_store_config()
    p = config_path or os.environ.get("ALGODID_CONFIG_PATH")
    if p:
        cfg = read_store_config_file(p, cfg)

    cfg = _coerce(_env_overrides(), cfg)
    validate_store_config(cfg)
    return cfg


def config_to_json(cfg: StoreConfig) -> Json:
    """Public view of a config (secrets redacted)."""
    out: Json = {f.name: getattr(cfg, f.name) for f in fields(cfg)}
    if out.get("operator_seed"):
        out["operator_seed"] = "<redacted>"
    return out


def with_overrides(cfg: StoreConfig, **changes: Any) -> StoreConfig:
    out = replace(cfg, **changes)
    validate_store_config(out)
    return out
