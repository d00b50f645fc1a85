from __future__ import annotations

import json

import pytest

from forgecore.config import get_config
from forgecore.errors import (OOG, BackendError, ConfigError, DepthExceeded, ExecHalt,
                              FuzzExhausted, InsufficientBalance, InvalidOpcode, Revert,
                              StaticViolation, UnknownBackend, error_to_status)
from forgecore.types.status import Status


@pytest.mark.parametrize("err,status", [
    (Revert("nope"), "revert"),
    (OOG(), "oog"),
    (InvalidOpcode(op="0xfe"), "invalid"),
    (StaticViolation(op="SSTORE"), "halt"),
    (DepthExceeded(depth=1025, limit=1024), "halt"),
    (ConfigError("bad"), "error"),
    (ValueError("plain"), "error"),
])
def test_error_to_status(err, status):
    assert error_to_status(err) == status


def test_every_halt_status_is_a_result_status():
    for cls in (Revert, OOG, InvalidOpcode, StaticViolation, InsufficientBalance, DepthExceeded):
        halt = cls()
        assert isinstance(halt, ExecHalt)
        Status.from_str(error_to_status(halt))


def test_revert_keeps_its_output():
    r = Revert("custom", output=b"\x01\x02")
    assert r.output == b"\x01\x02"
    assert r.code == "REVERT"
    assert OOG().output == b""


def test_to_dict_shapes():
    assert OOG().to_dict() == {"code": "OUT_OF_GAS", "message": "out of gas"}
    assert InsufficientBalance(balance=1, amount=2).to_dict() == {
        "code": "INSUFFICIENT_BALANCE",
        "message": "insufficient balance",
        "data": {"balance": 1, "amount": 2},
    }
    assert FuzzExhausted(rejects=9, runs=3).to_dict()["data"] == {"rejects": 9,
                                                                  "runs_completed": 3}
    assert BackendError("boom", backend="pyvm").to_dict()["data"] == {"backend": "pyvm"}
    unknown = UnknownBackend("evm", available=["stackvm", "pyvm"])
    assert isinstance(unknown, ConfigError)
    assert unknown.to_dict() == {
        "code": "CONFIG",
        "message": "unknown backend 'evm'",
        "data": {"key": "backend", "available": ["pyvm", "stackvm"]},
    }
    json.dumps(unknown.to_dict())


def test_get_config_is_cached(monkeypatch):
    get_config.cache_clear()
    monkeypatch.setenv("FORGECORE_FUZZ_RUNS", "17")
    monkeypatch.setenv("FORGECORE_BACKEND", "stackvm")
    try:
        cfg = get_config()
        assert cfg.fuzz.runs == 17
        assert cfg.backend == "stackvm"
        monkeypatch.setenv("FORGECORE_FUZZ_RUNS", "99")
        assert get_config() is cfg
    finally:
        get_config.cache_clear()
