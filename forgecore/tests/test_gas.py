from __future__ import annotations

import pytest

from forgecore.errors import OOG
from forgecore.gas.meter import GasMeter
from forgecore.gas.table import DEFAULT_GAS_TABLE, GasTable, callable_gas, load_gas_table


# ===================================================
# Meter
# ===================================================

def test_debit_and_reclaim():
    m = GasMeter(1_000)
    m.debit(300, reason="sload")
    assert (m.used, m.remaining) == (300, 700)
    m.reclaim(100)
    assert m.used == 200
    with pytest.raises(ValueError):
        m.reclaim(201)


def test_oog_burns_the_whole_allowance():
    m = GasMeter(100)
    m.debit(40)
    with pytest.raises(OOG) as ei:
        m.debit(61, reason="sstore")
    assert m.used == 100
    assert m.remaining == 0
    assert ei.value.code == "OUT_OF_GAS"
    assert ei.value.data == {"needed": 61, "limit": 100}
    assert "sstore" in ei.value.message


def test_limit_must_be_u256():
    with pytest.raises(ValueError):
        GasMeter(-1)
    with pytest.raises(ValueError):
        GasMeter(2**256)


# ===================================================
# Table
# ===================================================

def test_sstore_cost_depends_on_current_value():
    t = DEFAULT_GAS_TABLE
    assert t.sstore_cost(0, 5) == t.sstore_set
    assert t.sstore_cost(5, 6) == t.sstore_reset
    assert t.sstore_cost(5, 0) == t.sstore_reset
    assert t.sstore_cost(5, 5) == t.sstore_noop


def test_composite_costs():
    t = GasTable(log=1, log_topic=10, log_data_per_byte=100, call=7, call_value=70,
                 code_deposit_per_byte=3)
    assert t.log_cost(2, 3) == 1 + 20 + 300
    assert t.call_cost(0) == 7
    assert t.call_cost(1) == 77
    assert t.deposit_cost(10) == 30


def test_callable_gas_keeps_one_64th():
    assert callable_gas(6_400) == 6_300
    assert callable_gas(6_400, 1_000) == 1_000
    assert callable_gas(6_400, 10_000) == 6_300


def test_table_rejects_bad_values():
    with pytest.raises(TypeError):
        GasTable(sload=True)
    with pytest.raises(ValueError):
        GasTable(sload=-1)
    with pytest.raises(KeyError):
        GasTable.from_mapping({"sload": 1, "warp_drive": 2})


def test_load_gas_table_from_yaml(tmp_path):
    p = tmp_path / "gas.yaml"
    p.write_text("sload: 100\nsstore_set: 2000\n", encoding="utf-8")
    t = load_gas_table(p)
    assert t.sload == 100
    assert t.sstore_set == 2000
    assert t.balance == DEFAULT_GAS_TABLE.balance

    t2 = load_gas_table(p, overrides={"cheatcode": 5})
    assert t2.cheatcode == 5
    assert t2.sload == 100


def test_load_gas_table_defaults():
    assert load_gas_table() is DEFAULT_GAS_TABLE
