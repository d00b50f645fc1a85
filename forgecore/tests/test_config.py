from __future__ import annotations

from dataclasses import replace

import pytest

from forgecore.config import (DEFAULT_SENDER, FuzzConfig, Limits, RunConfig, load_config,
                              load_fixture, summary, validate)
from forgecore.errors import ConfigError, UnknownBackend
from forgecore.types.address import to_address


def test_defaults_from_empty_env():
    cfg = load_config(env={})
    assert cfg.backend == "pyvm"
    assert cfg.gas_limit == 30_000_000
    assert cfg.max_call_depth == 1024
    assert cfg.selfdestruct_policy == "immediate"
    assert cfg.sender == DEFAULT_SENDER
    assert cfg.fuzz.runs == 256
    assert cfg.fuzz.seed is None
    assert cfg.fuzz.time_budget_s is None


def test_env_values_are_parsed():
    env = {
        "FORGECORE_BACKEND": "stackvm",
        "FORGECORE_GAS_LIMIT": "1_000_000",
        "FORGECORE_MAX_CALL_DEPTH": "16",
        "FORGECORE_FUZZ_SEED": "0xdead",
        "FORGECORE_FUZZ_RUNS": "32",
        "FORGECORE_FUZZ_TIME_BUDGET": "2.5",
        "FORGECORE_FUZZ_BOUNDS": "{x: [1, 10], testFoo.y: '0:5'}",
        "FORGECORE_SELFDESTRUCT_POLICY": "Deferred",
        "FORGECORE_WORKERS": "3",
        "FORGECORE_SENDER": "0x" + "ab" * 20,
    }
    cfg = load_config(env=env)
    assert cfg.backend == "stackvm"
    assert cfg.limits == Limits(gas_limit=1_000_000, max_call_depth=16)
    assert cfg.fuzz.seed == 0xDEAD
    assert cfg.fuzz.runs == 32
    assert cfg.fuzz.time_budget_s == 2.5
    assert cfg.selfdestruct_policy == "deferred"
    assert cfg.workers == 3
    assert cfg.sender == to_address("0x" + "ab" * 20)
    assert cfg.fuzz.bounds_for("testFoo", "y") == (0, 5)
    assert cfg.fuzz.bounds_for("testBar", "x") == (1, 10)
    assert cfg.fuzz.bounds_for("testBar", "y") is None


def test_overrides_beat_env():
    cfg = load_config(env={"FORGECORE_FUZZ_RUNS": "5"}, overrides={"fuzz.runs": 7, "workers": 1})
    assert cfg.fuzz.runs == 7
    assert cfg.workers == 1


@pytest.mark.parametrize("env", [
    {"FORGECORE_FUZZ_RUNS": "0"},
    {"FORGECORE_FUZZ_RUNS": "many"},
    {"FORGECORE_GAS_LIMIT": "0"},
    {"FORGECORE_MAX_CALL_DEPTH": "0"},
    {"FORGECORE_WORKERS": "0"},
    {"FORGECORE_SELFDESTRUCT_POLICY": "sometimes"},
    {"FORGECORE_FUZZ_SEED": str(2**64)},
    {"FORGECORE_FUZZ_TIME_BUDGET": "-1"},
    {"FORGECORE_FUZZ_BOUNDS": "{x: [10, 1]}"},
    {"FORGECORE_MATCH": "test("},
    {"FORGECORE_SENDER": "not-an-address"},
    {"FORGECORE_GAS_TABLE": "/nonexistent/gas.yaml"},
])
def test_invalid_config_is_rejected_up_front(env):
    with pytest.raises(ConfigError):
        load_config(env=env)


def test_unknown_backend():
    with pytest.raises(UnknownBackend) as ei:
        load_config(env={"FORGECORE_BACKEND": "evmone"})
    assert ei.value.data["key"] == "backend"
    assert "pyvm" in ei.value.data["available"]


def test_with_overrides_revalidates():
    cfg = RunConfig()
    assert cfg.with_overrides(workers=2).workers == 2
    with pytest.raises(ConfigError):
        cfg.with_overrides(fuzz=FuzzConfig(runs=-1))


def test_validate_returns_the_config():
    cfg = replace(RunConfig(), match="^testFuzz")
    assert validate(cfg) is cfg


def test_block_env_and_summary():
    cfg = RunConfig(timestamp=1_700_000_000, block_number=5, chain_id=7)
    env = cfg.block_env()
    assert (env.timestamp, env.number, env.chain_id) == (1_700_000_000, 5, 7)
    assert env.origin == cfg.sender
    s = summary(cfg)
    assert "backend=pyvm" in s and "seed=random" in s


def test_to_dict_is_json_friendly():
    d = RunConfig(fuzz=FuzzConfig(bounds=(("x", (0, 3)),))).to_dict()
    assert d["sender"].startswith("0x")
    assert d["fuzz"]["bounds"] == {"x": [0, 3]}
    assert d["limits"]["gas_limit"] == 30_000_000


# ===================================================
# Fixtures
# ===================================================

def test_load_fixture_yaml(tmp_path):
    p = tmp_path / "genesis.yaml"
    p.write_text(
        "accounts:\n"
        "  \"0x00000000000000000000000000000000000000aa\":\n"
        "    balance: 1000\n"
        "    nonce: 2\n"
        "    storage: {\"0x0\": \"0x2a\"}\n"
        "env:\n"
        "  timestamp: 1700000000\n"
        "  number: 100\n",
        encoding="utf-8",
    )
    led = load_fixture(p)
    aa = to_address("0x" + "00" * 19 + "aa")
    assert led.balance(aa) == 1000
    assert led.nonce(aa) == 2
    assert led.sload(aa, 0) == 42
    assert led.env.timestamp == 1_700_000_000
    assert led.env.number == 100


def test_empty_fixture_is_an_empty_ledger(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_fixture(p).accounts == {}


@pytest.mark.parametrize("text", ["- just\n- a list\n", "accounts:\n  \"0x01\": {balance: -5}\n"])
def test_bad_fixtures_raise_config_error(tmp_path, text):
    p = tmp_path / "bad.yaml"
    p.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_fixture(p)


def test_missing_fixture(tmp_path):
    with pytest.raises(ConfigError):
        load_fixture(tmp_path / "nope.yaml")
