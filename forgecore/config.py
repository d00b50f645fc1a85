"""
forgecore.config — run configuration for the test execution core.

This module centralizes knobs for:
  • Backend selection (which interpreter runs contract code)
  • Fuzzing (run count, seed, rejection limit, shrink budget, time budget, bounds)
  • Limits (gas limit per top-level call, call depth)
  • Host policy (self-destruct balance handling, gas table source)
  • Test environment (sender, its initial balance, block env defaults)

Configuration may be provided via environment variables. Safe defaults are chosen so a
local developer run works out of the box. The resulting `RunConfig` is immutable and is
passed explicitly through Runner → FuzzEngine → Orchestrator; nothing reads it from a
global at execution time.

Environment variables (all optional):
  FORGECORE_BACKEND               -> interpreter backend name (default: pyvm)
  FORGECORE_GAS_LIMIT             -> gas limit per top-level call (default: 30_000_000)
  FORGECORE_MAX_CALL_DEPTH        -> nested call depth limit (default: 1024)
  FORGECORE_GAS_TABLE             -> path to a YAML/JSON gas table (default: built-in)
  FORGECORE_SELFDESTRUCT_POLICY   -> immediate | deferred (default: immediate)
  FORGECORE_WORKERS               -> worker threads (default: min(8, cpu count))
  FORGECORE_MATCH                 -> regex; only tests whose name matches run

  FORGECORE_FUZZ_RUNS             -> trials per fuzz test (default: 256)
  FORGECORE_FUZZ_SEED             -> fixed seed, decimal or 0x-hex (default: random)
  FORGECORE_FUZZ_MAX_REJECTS      -> consecutive rejected inputs before giving up (default: 65536)
  FORGECORE_FUZZ_MAX_SHRINK_ITERS -> shrink predicate evaluations (default: 1024)
  FORGECORE_FUZZ_TIME_BUDGET      -> seconds per fuzz test, float (default: unlimited)

  FORGECORE_SENDER                -> address of the account that deploys and calls tests
  FORGECORE_INITIAL_BALANCE       -> sender's starting balance in wei (default: 2**96)
  FORGECORE_TIMESTAMP / FORGECORE_BLOCK_NUMBER / FORGECORE_CHAIN_ID -> block env defaults

Programmatic usage:
    from forgecore.config import load_config
    cfg = load_config(overrides={"backend": "stackvm", "fuzz.runs": 64})

Fixtures:
    ledger = load_fixture("fixtures/genesis.yaml")   # accounts + env, YAML or JSON
"""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from forgecore.errors import ConfigError
from forgecore.types.address import to_address, to_hex
from forgecore.types.context import BlockEnv
from forgecore.types.u256 import is_u256

if TYPE_CHECKING:  # pragma: no cover
    from forgecore.state.ledger import LedgerState

# ----------------------------- helpers -------------------------------------

SELFDESTRUCT_POLICIES = ("immediate", "deferred")

DEFAULT_SENDER = to_address("0x1804c8AB1F12E6bbf3894d4083f33e07309d1f38")


_INT_RE = re.compile(r"^\s*(0[xX][0-9a-fA-F]+|\d[\d_]*)\s*$")


def _parse_int(key: str, v: Any) -> int:
    """
    Parse ints from config sources: 123, "123", "1_000_000", "0x10".
    """
    if isinstance(v, bool):
        raise ConfigError(f"{key} must be an integer, got bool", key=key)
    if isinstance(v, int):
        return v
    m = _INT_RE.match(str(v))
    if not m:
        raise ConfigError(f"{key} must be an integer, got {v!r}", key=key)
    s = m.group(1).replace("_", "")
    return int(s, 16) if s.lower().startswith("0x") else int(s)


def _parse_float(key: str, v: Any) -> float:
    try:
        return float(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {v!r}", key=key) from e


def _parse_bounds(key: str, raw: Any) -> Tuple[Tuple[str, Tuple[int, int]], ...]:
    """
    Bounds come as a mapping {"param": [lo, hi]} (or "lo:hi" strings).
    Keys are "<param>" or "<test>.<param>"; parameters without a name are
    addressed as arg0, arg1, ...
    """
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = yaml.safe_load(raw) or {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{key} must be a mapping of param -> [lo, hi]", key=key)
    out: Dict[str, Tuple[int, int]] = {}
    for name, rng in raw.items():
        if isinstance(rng, str) and ":" in rng:
            rng = rng.split(":", 1)
        if not isinstance(rng, (list, tuple)) or len(rng) != 2:
            raise ConfigError(f"{key}.{name} must be [lo, hi]", key=key)
        out[str(name)] = (_parse_int(f"{key}.{name}", rng[0]), _parse_int(f"{key}.{name}", rng[1]))
    return tuple(sorted(out.items()))


# ------------------------------ dataclasses ---------------------------------


@dataclass(frozen=True)
class FuzzConfig:
    runs: int = 256
    seed: Optional[int] = None
    max_rejects: int = 65_536
    max_shrink_iters: int = 1_024
    time_budget_s: Optional[float] = None
    # ((param-key, (lo, hi)), ...)
    bounds: Tuple[Tuple[str, Tuple[int, int]], ...] = ()

    def bounds_for(self, test: str, param: str) -> Optional[Tuple[int, int]]:
        d = dict(self.bounds)
        return d.get(f"{test}.{param}", d.get(param))


@dataclass(frozen=True)
class Limits:
    gas_limit: int = 30_000_000
    max_call_depth: int = 1024


@dataclass(frozen=True)
class RunConfig:
    backend: str = "pyvm"
    fuzz: FuzzConfig = field(default_factory=FuzzConfig)
    limits: Limits = field(default_factory=Limits)
    workers: int = 1
    selfdestruct_policy: str = "immediate"
    gas_table_path: Optional[Path] = None
    match: Optional[str] = None
    sender: bytes = DEFAULT_SENDER
    initial_balance: int = 2**96
    timestamp: int = 1
    block_number: int = 1
    chain_id: int = 31337

    @property
    def gas_limit(self) -> int:
        return self.limits.gas_limit

    @property
    def max_call_depth(self) -> int:
        return self.limits.max_call_depth

    def block_env(self) -> BlockEnv:
        return BlockEnv(timestamp=self.timestamp, number=self.block_number,
                        chain_id=self.chain_id, origin=self.sender)

    def with_overrides(self, **changes: Any) -> "RunConfig":
        return validate(replace(self, **changes))

    def to_dict(self) -> Dict[str, object]:
        d = asdict(self)
        d["gas_table_path"] = str(self.gas_table_path) if self.gas_table_path else None
        d["sender"] = to_hex(self.sender)
        d["fuzz"]["bounds"] = {k: list(v) for k, v in self.fuzz.bounds}
        return d


# ------------------------------ validation ----------------------------------


def validate(cfg: RunConfig) -> RunConfig:
    """
    Reject invalid configuration before any execution begins. Returns `cfg`.
    """
    f, lim = cfg.fuzz, cfg.limits
    if f.runs <= 0:
        raise ConfigError("fuzz.runs must be > 0", key="fuzz.runs")
    if f.max_rejects <= 0:
        raise ConfigError("fuzz.max_rejects must be > 0", key="fuzz.max_rejects")
    if f.max_shrink_iters < 0:
        raise ConfigError("fuzz.max_shrink_iters must be >= 0", key="fuzz.max_shrink_iters")
    if f.seed is not None and not 0 <= f.seed < 2**64:
        raise ConfigError("fuzz.seed must be a 64-bit unsigned integer", key="fuzz.seed")
    if f.time_budget_s is not None and f.time_budget_s <= 0:
        raise ConfigError("fuzz.time_budget_s must be > 0", key="fuzz.time_budget_s")
    for name, (lo, hi) in f.bounds:
        if lo > hi:
            raise ConfigError(f"fuzz.bounds.{name}: lo > hi", key="fuzz.bounds")
    if lim.gas_limit <= 0 or not is_u256(lim.gas_limit):
        raise ConfigError("gas_limit must be a positive u256", key="gas_limit")
    if lim.max_call_depth <= 0:
        raise ConfigError("max_call_depth must be > 0", key="max_call_depth")
    if cfg.workers <= 0:
        raise ConfigError("workers must be > 0", key="workers")
    if cfg.selfdestruct_policy not in SELFDESTRUCT_POLICIES:
        raise ConfigError(
            f"selfdestruct_policy must be one of {SELFDESTRUCT_POLICIES}",
            key="selfdestruct_policy",
        )
    if not is_u256(cfg.initial_balance):
        raise ConfigError("initial_balance must be a u256", key="initial_balance")
    if cfg.chain_id <= 0:
        raise ConfigError("chain_id must be >= 1", key="chain_id")
    if cfg.match is not None:
        try:
            re.compile(cfg.match)
        except re.error as e:
            raise ConfigError(f"match is not a valid regex: {e}", key="match") from e
    if cfg.gas_table_path is not None and not cfg.gas_table_path.is_file():
        raise ConfigError(f"gas table not found: {cfg.gas_table_path}", key="gas_table_path")
    # Late import: the runtime registry imports the backends.
    from forgecore.runtime.executor import available_backends
    if cfg.backend not in available_backends():
        from forgecore.errors import UnknownBackend
        raise UnknownBackend(cfg.backend, available=available_backends())
    return cfg


# ------------------------------ loader --------------------------------------


def load_config(
    env: Optional[Mapping[str, str]] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
) -> RunConfig:
    """
    Build a validated RunConfig from environment and optional overrides.

    Args:
        env: mapping to read variables from (default: os.environ)
        overrides: explicit field overrides, highest precedence; keys support:
          'backend', 'gas_limit', 'max_call_depth', 'workers', 'selfdestruct_policy',
          'gas_table_path', 'match', 'sender', 'initial_balance', 'timestamp',
          'block_number', 'chain_id', 'fuzz.runs', 'fuzz.seed', 'fuzz.max_rejects',
          'fuzz.max_shrink_iters', 'fuzz.time_budget_s', 'fuzz.bounds'
    """
    env = os.environ if env is None else env
    ov = dict(overrides or {})

    def pick(key: str, env_key: str, default: Any) -> Any:
        if key in ov:
            return ov[key]
        return env.get(env_key, default)

    seed_raw = pick("fuzz.seed", "FORGECORE_FUZZ_SEED", None)
    budget_raw = pick("fuzz.time_budget_s", "FORGECORE_FUZZ_TIME_BUDGET", None)
    fuzz = FuzzConfig(
        runs=_parse_int("fuzz.runs", pick("fuzz.runs", "FORGECORE_FUZZ_RUNS", 256)),
        seed=None if seed_raw in (None, "") else _parse_int("fuzz.seed", seed_raw),
        max_rejects=_parse_int(
            "fuzz.max_rejects", pick("fuzz.max_rejects", "FORGECORE_FUZZ_MAX_REJECTS", 65_536)),
        max_shrink_iters=_parse_int(
            "fuzz.max_shrink_iters",
            pick("fuzz.max_shrink_iters", "FORGECORE_FUZZ_MAX_SHRINK_ITERS", 1_024)),
        time_budget_s=None if budget_raw in (None, "")
        else _parse_float("fuzz.time_budget_s", budget_raw),
        bounds=_parse_bounds("fuzz.bounds", pick("fuzz.bounds", "FORGECORE_FUZZ_BOUNDS", None)),
    )

    limits = Limits(
        gas_limit=_parse_int("gas_limit", pick("gas_limit", "FORGECORE_GAS_LIMIT", 30_000_000)),
        max_call_depth=_parse_int(
            "max_call_depth", pick("max_call_depth", "FORGECORE_MAX_CALL_DEPTH", 1024)),
    )

    gas_table = pick("gas_table_path", "FORGECORE_GAS_TABLE", None)
    sender = pick("sender", "FORGECORE_SENDER", None)
    match = pick("match", "FORGECORE_MATCH", None)
    try:
        sender_addr = DEFAULT_SENDER if sender in (None, "") else to_address(sender)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"sender is not an address: {sender!r}", key="sender") from e

    cfg = RunConfig(
        backend=str(pick("backend", "FORGECORE_BACKEND", "pyvm")).strip(),
        fuzz=fuzz,
        limits=limits,
        workers=_parse_int("workers", pick("workers", "FORGECORE_WORKERS",
                                           min(8, os.cpu_count() or 1))),
        selfdestruct_policy=str(
            pick("selfdestruct_policy", "FORGECORE_SELFDESTRUCT_POLICY", "immediate")
        ).strip().lower(),
        gas_table_path=Path(gas_table).expanduser() if gas_table not in (None, "") else None,
        match=match or None,
        sender=sender_addr,
        initial_balance=_parse_int(
            "initial_balance", pick("initial_balance", "FORGECORE_INITIAL_BALANCE", 2**96)),
        timestamp=_parse_int("timestamp", pick("timestamp", "FORGECORE_TIMESTAMP", 1)),
        block_number=_parse_int("block_number", pick("block_number", "FORGECORE_BLOCK_NUMBER", 1)),
        chain_id=_parse_int("chain_id", pick("chain_id", "FORGECORE_CHAIN_ID", 31337)),
    )
    return validate(cfg)


@lru_cache(maxsize=1)
def get_config() -> RunConfig:
    """
    Cached config read from the process environment. Suitable for application
    bootstraps; library code takes a RunConfig argument instead.
    """
    return load_config()


# ------------------------------ fixtures ------------------------------------


def load_fixture(path: Union[str, Path]) -> "LedgerState":
    """
    Load an initial ledger from YAML or JSON:

        accounts:
          "0x00000000000000000000000000000000000000aa":
            balance: 1000
            nonce: 1
            code: "0x"
            storage: {"0x0": "0x2a"}
        env:
          timestamp: 1700000000
          number: 100
    """
    from forgecore.state.ledger import LedgerState

    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read fixture {p}: {e}", key="fixture") from e
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"fixture {p.name}: root must be a mapping", key="fixture")
    try:
        return LedgerState.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"fixture {p.name}: {e}", key="fixture") from e


# ----------------------------- pretty-print ---------------------------------


def summary(cfg: RunConfig) -> str:
    """
    Return a human-friendly one-line summary of the most important knobs.
    """
    f = cfg.fuzz
    return (
        "forgecore{"
        f"backend={cfg.backend}, gas={cfg.gas_limit}, depth={cfg.max_call_depth}, "
        f"workers={cfg.workers}, selfdestruct={cfg.selfdestruct_policy}, "
        f"runs={f.runs}, seed={'random' if f.seed is None else hex(f.seed)}, "
        f"rejects={f.max_rejects}, shrink={f.max_shrink_iters}"
        "}"
    )


__all__ = [
    "FuzzConfig",
    "Limits",
    "RunConfig",
    "SELFDESTRUCT_POLICIES",
    "DEFAULT_SENDER",
    "validate",
    "load_config",
    "get_config",
    "load_fixture",
    "summary",
]
