import pytest

from tokenvm.address import address, parse_address

HRP = "token"


def test_round_trip():
    pk = bytes(range(32))
    addr = address(pk, HRP)
    assert parse_address(addr, HRP) == pk


def test_address_has_prefix_and_separator():
    addr = address(bytes(32), HRP)
    assert addr.startswith(HRP + "1")
    assert addr == addr.lower()


def test_uppercase_accepted():
    pk = bytes([7] * 32)
    addr = address(pk, HRP)
    assert parse_address(addr.upper(), HRP) == pk


def test_mixed_case_rejected():
    addr = address(bytes([1] * 32), HRP)
    mixed = addr[:-1] + addr[-1].upper() if addr[-1].isalpha() else addr[0].upper() + addr[1:]
    with pytest.raises(ValueError):
        parse_address(mixed, HRP)


def test_wrong_hrp_rejected():
    addr = address(bytes([2] * 32), HRP)
    with pytest.raises(ValueError, match="hrp"):
        parse_address(addr, "other")


def test_bad_checksum_rejected():
    addr = address(bytes([3] * 32), HRP)
    last = addr[-1]
    replacement = "q" if last != "q" else "p"
    with pytest.raises(ValueError, match="checksum"):
        parse_address(addr[:-1] + replacement, HRP)


def test_valid_bech32_with_wrong_length_rejected():
    # Standard bech32 example string with an empty payload.
    with pytest.raises(ValueError, match="length"):
        parse_address("a12uel5l", "a")


def test_public_key_length_checked():
    with pytest.raises(ValueError):
        address(bytes(31), HRP)


def test_distinct_keys_give_distinct_addresses():
    assert address(bytes(32), HRP) != address(bytes([1]) + bytes(31), HRP)