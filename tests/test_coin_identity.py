import pytest
from sympy import isprime

from coin_errors import InvalidInput
from coin_models import Coin
from tests.conftest import ALICE, BOB


def test_derive_element_is_deterministic(identity):
    e1 = identity.derive_element(ALICE, 42)
    e2 = identity.derive_element(ALICE, 42)
    assert e1 == e2
    assert isprime(e1)


def test_distinct_coins_yield_distinct_elements(identity):
    elements = {
        identity.derive_element(ALICE, 42),
        identity.derive_element(BOB, 42),
        identity.derive_element(ALICE, 43),
        identity.derive_element(BOB, 0),
    }
    assert len(elements) == 4


def test_element_matches_hash_of_canonical_encoding(identity, primitives):
    expected = primitives.hash_to_prime(ALICE + (42).to_bytes(8, "little"))
    assert identity.element_of(Coin(ALICE, 42)) == expected


@pytest.mark.parametrize("key", [b"", b"\x01" * 31, b"\x01" * 33, bytes(32), "ab" * 32])
def test_bad_owner_keys_are_invalid_input(identity, key):
    with pytest.raises(InvalidInput):
        identity.derive_element(key, 1)


@pytest.mark.parametrize("coin_id", [-1, 2**64, True, "7", 1.0])
def test_bad_coin_ids_are_invalid_input(identity, coin_id):
    with pytest.raises(InvalidInput):
        identity.derive_element(ALICE, coin_id)


def test_max_coin_id_is_accepted(identity):
    assert identity.derive_element(ALICE, 2**64 - 1) > 1
