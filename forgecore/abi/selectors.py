"""
Function selectors and event topics (Keccak-256 via eth-hash).

    function_selector("transfer(address,uint256)")  -> b"\\xa9\\x05\\x9c\\xbb"
    event_topic("Transfer(address,address,uint256)") -> 32-byte topic0

Signatures are canonicalized (whitespace stripped, "uint" -> "uint256") before
hashing, so "f(uint)" and "f(uint256)" share a selector.
"""

from __future__ import annotations

from functools import lru_cache

from eth_hash.auto import keccak

from .types import canonical_signature, parse_signature

__all__ = ["canonicalize", "function_selector", "event_topic"]


def canonicalize(signature: str) -> str:
    name, types = parse_signature(signature)
    return canonical_signature(name, types)


@lru_cache(maxsize=4096)
def function_selector(signature: str) -> bytes:
    return keccak(canonicalize(signature).encode("ascii"))[:4]


@lru_cache(maxsize=1024)
def event_topic(signature: str) -> bytes:
    return keccak(canonicalize(signature).encode("ascii"))
