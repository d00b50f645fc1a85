"""
forgecore.types.address — 20-byte addresses and hex helpers.

Addresses are raw 20-byte `bytes` everywhere inside the core. Hex strings
(with or without 0x) and ints are accepted at the edges and normalized here.
"""

from __future__ import annotations

from typing import Optional, Union

from eth_hash.auto import keccak

HexLike = Union[str, bytes, bytearray, memoryview]
AddressLike = Union[HexLike, int]

ADDRESS_BYTES = 20
ZERO_ADDRESS: bytes = b"\x00" * ADDRESS_BYTES


def hex_to_bytes(v: HexLike) -> bytes:
    if isinstance(v, (bytes, bytearray, memoryview)):
        return bytes(v)
    if isinstance(v, str):
        s = v.strip()
        if s.startswith(("0x", "0X")):
            s = s[2:]
        if len(s) % 2:
            s = "0" + s  # tolerate odd-length hex
        try:
            return bytes.fromhex(s)
        except ValueError as e:
            raise ValueError(f"invalid hex string: {v!r}") from e
    raise TypeError(f"expected hex-like value, got {type(v).__name__}")


def to_hex(b: Optional[bytes]) -> Optional[str]:
    if b is None:
        return None
    return "0x" + bytes(b).hex()


def to_address(v: AddressLike) -> bytes:
    """
    Normalize an address-like value into 20 raw bytes.

    Ints are taken modulo 2**160 (as the machine does); shorter byte strings
    are left-padded; longer ones are rejected.
    """
    if isinstance(v, bool):
        raise TypeError("bool is not an address")
    if isinstance(v, int):
        if v < 0:
            raise ValueError("address int must be non-negative")
        return (v & ((1 << 160) - 1)).to_bytes(ADDRESS_BYTES, "big")
    b = hex_to_bytes(v)
    if len(b) > ADDRESS_BYTES:
        raise ValueError(f"address longer than {ADDRESS_BYTES} bytes: {len(b)}")
    return b.rjust(ADDRESS_BYTES, b"\x00")


def address_to_int(addr: bytes) -> int:
    return int.from_bytes(addr, "big")


def checksum(addr: bytes) -> str:
    """EIP-55 mixed-case rendering, for reports and logs."""
    h = bytes(addr).hex()
    digest = keccak(h.encode("ascii")).hex()
    return "0x" + "".join(c.upper() if int(digest[i], 16) >= 8 else c for i, c in enumerate(h))


def create_address(sender: bytes, nonce: int) -> bytes:
    """
    Deterministic CREATE address: keccak(rlp([sender, nonce]))[12:].

    Only the two-item list shape is needed here, so the RLP encoding is inlined.
    """
    if nonce == 0:
        nonce_enc = b"\x80"
    elif nonce < 0x80:
        nonce_enc = bytes([nonce])
    else:
        raw = nonce.to_bytes((nonce.bit_length() + 7) // 8, "big")
        nonce_enc = bytes([0x80 + len(raw)]) + raw
    sender_enc = bytes([0x80 + ADDRESS_BYTES]) + bytes(sender)
    payload = sender_enc + nonce_enc
    return keccak(bytes([0xC0 + len(payload)]) + payload)[12:]


__all__ = [
    "HexLike",
    "AddressLike",
    "ADDRESS_BYTES",
    "ZERO_ADDRESS",
    "hex_to_bytes",
    "to_hex",
    "to_address",
    "address_to_int",
    "checksum",
    "create_address",
]
