"""Bech32 encoding of public keys as human-readable addresses."""

from __future__ import annotations

PUBLIC_KEY_LEN = 32
MAX_ADDRESS_LEN = 90

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {c: i for i, c in enumerate(_CHARSET)}
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for bit, generator in enumerate(_GENERATORS):
            if (top >> bit) & 1:
                chk ^= generator
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError("invalid data value for bit conversion")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or (acc << (to_bits - bits)) & maxv:
        raise ValueError("invalid padding in bech32 data")
    return out


def _bech32_encode(hrp: str, payload: bytes) -> str:
    data = _convert_bits(payload, 8, 5, True)
    combined = data + _checksum(hrp, data)
    return hrp + "1" + "".join(_CHARSET[d] for d in combined)


def _bech32_decode(text: str) -> tuple[str, bytes]:
    if len(text) > MAX_ADDRESS_LEN:
        raise ValueError(f"address too long: {len(text)} > {MAX_ADDRESS_LEN}")
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise ValueError("address contains invalid characters")
    if text.lower() != text and text.upper() != text:
        raise ValueError("address has mixed case")
    text = text.lower()
    sep = text.rfind("1")
    if sep < 1 or sep + 7 > len(text):
        raise ValueError("invalid separator position in address")
    hrp = text[:sep]
    try:
        data = [_CHARSET_REV[c] for c in text[sep + 1:]]
    except KeyError as exc:
        raise ValueError(f"invalid character in address: {exc.args[0]!r}") from None
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError("invalid address checksum")
    payload = bytes(_convert_bits(data[:-6], 5, 8, False))
    return hrp, payload


def address(public_key: bytes, hrp: str) -> str:
    """Encode a 32-byte public key as a bech32 address with the given prefix."""
    public_key = bytes(public_key)
    if len(public_key) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(public_key)}")
    return _bech32_encode(hrp, public_key)


def parse_address(text: str, hrp: str) -> bytes:
    """Decode a bech32 address, checking its prefix, into a public key."""
    parsed_hrp, payload = _bech32_decode(text)
    if parsed_hrp != hrp:
        raise ValueError(f"incorrect hrp: expected {hrp!r}, got {parsed_hrp!r}")
    if len(payload) != PUBLIC_KEY_LEN:
        raise ValueError("invalid public key length in address")
    return payload