from __future__ import annotations

import json

import pytest

from algodid.config import (
    config_to_json,
    default_store_config,
    load_store_config,
    read_store_config_file,
    validate_store_config,
    with_overrides,
)

_SEED = "11" * 32


def _clear_env(monkeypatch) -> None:
    for key in (
        "ALGODID_MODE",
        "ALGODID_APP_ID",
        "ALGODID_GROUP_SIZE",
        "ALGODID_MAX_ATTEMPTS",
        "ALGODID_VERIFY_REMOTE",
        "ALGODID_OPERATOR_SEED",
        "ALGODID_CONFIG_PATH",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults_are_valid() -> None:
    cfg = default_store_config()
    validate_store_config(cfg)
    assert cfg.mode == "dev"
    assert cfg.group_size == 8
    assert cfg.max_attempts == 3
    assert cfg.wait_rounds == 3


def test_env_overrides(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("ALGODID_APP_ID", "1001")
    monkeypatch.setenv("ALGODID_GROUP_SIZE", "16")
    monkeypatch.setenv("ALGODID_VERIFY_REMOTE", "yes")

    cfg = load_store_config()
    assert cfg.app_id == 1001
    assert cfg.group_size == 16
    assert cfg.verify_remote is True


def test_yaml_file_then_env(tmp_path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    p = tmp_path / "store.yaml"
    p.write_text("mode: testnet\napp_id: 7\nmax_attempts: 5\n", encoding="utf-8")
    monkeypatch.setenv("ALGODID_MAX_ATTEMPTS", "2")

    cfg = load_store_config(config_path=str(p))
    assert cfg.mode == "testnet"
    assert cfg.app_id == 7
    assert cfg.max_attempts == 2


def test_json_file(tmp_path) -> None:
    p = tmp_path / "store.json"
    p.write_text(json.dumps({"backoff_ms": 50, "backoff_cap_ms": 100}), encoding="utf-8")
    cfg = read_store_config_file(str(p))
    assert (cfg.backoff_ms, cfg.backoff_cap_ms) == (50, 100)


def test_non_mapping_file_rejected(tmp_path) -> None:
    p = tmp_path / "store.yml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        read_store_config_file(str(p))


def test_prod_requires_operator_seed() -> None:
    with pytest.raises(ValueError):
        with_overrides(default_store_config(), mode="prod")
    cfg = with_overrides(default_store_config(), mode="prod", operator_seed=_SEED)
    assert cfg.operator_seed == _SEED


@pytest.mark.parametrize(
    "changes",
    [
        {"group_size": 0},
        {"group_size": 17},
        {"max_attempts": 0},
        {"backoff_ms": 100, "backoff_cap_ms": 10},
        {"operator_seed": "zz"},
        {"operator_seed": "11" * 10},
        {"mode": "mainnet"},
    ],
)
def test_validation_failures(changes) -> None:
    with pytest.raises(ValueError):
        with_overrides(default_store_config(), **changes)


def test_config_json_redacts_seed() -> None:
    cfg = with_overrides(default_store_config(), operator_seed=_SEED)
    out = config_to_json(cfg)
    assert out["operator_seed"] == "<redacted>"
    assert out["group_size"] == cfg.group_size
