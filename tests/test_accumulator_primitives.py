import pytest
from sympy import isprime

from accumulator_primitives import (
    MODULUS,
    MODULUS_BYTES,
    CryptoPrimitives,
    decode_int,
    encode_coin_id,
    encode_int,
)
from coin_errors import InvalidInput


def test_encode_int_is_little_endian_and_zero_padded():
    data = encode_int(0x0102)
    assert len(data) == MODULUS_BYTES
    assert data[:2] == b"\x02\x01"
    assert data[2:] == bytes(MODULUS_BYTES - 2)


def test_encode_int_accepts_values_up_to_the_modulus_width():
    assert decode_int(encode_int(MODULUS - 1)) == MODULUS - 1


@pytest.mark.parametrize("value", [-1, 1 << (MODULUS_BYTES * 8)])
def test_encode_int_rejects_values_outside_width(value):
    with pytest.raises(InvalidInput):
        encode_int(value)


def test_decode_int_requires_exact_width():
    with pytest.raises(InvalidInput):
        decode_int(b"\x01\x02")


def test_coin_id_encoding_is_eight_bytes_little_endian():
    assert encode_coin_id(42) == b"\x2a" + bytes(7)
    assert encode_coin_id(2**64 - 1) == b"\xff" * 8


def test_hash_to_prime_is_deterministic_and_prime(primitives):
    a = primitives.hash_to_prime(b"coin")
    assert a == primitives.hash_to_prime(b"coin")
    assert isprime(a)
    assert a != primitives.hash_to_prime(b"coin2")


def test_shamir_trick_combines_roots():
    # Same group and values as the reference accumulator tests (N = 13)
    small = CryptoPrimitives(modulus=13, generator=2)
    root = small.witness_after_deletion(12131, 8, 77, 15, 11)
    assert root == 6


def test_shamir_trick_rejects_mismatched_roots():
    small = CryptoPrimitives(modulus=13, generator=2)
    with pytest.raises(ValueError):
        small.shamir_trick(2, 3, 5, 7)


def test_shamir_trick_rejects_shared_factors(primitives):
    g = primitives.generator
    with pytest.raises(ValueError):
        primitives.shamir_trick(primitives.exp(g, 3), primitives.exp(g, 5), 15, 9)


def test_deletion_recovers_the_remaining_accumulator(primitives):
    g = primitives.generator
    e, d, f = 1009, 1013, 1019
    prior = primitives.exp(g, e * d)
    witness = primitives.exp(g, d)
    # delete d, add f
    target = primitives.exp(g, e * f)
    updated = primitives.witness_after_deletion(e, witness, f, d, target)
    assert updated == primitives.exp(g, f)
    assert primitives.verify(updated, e, target)
    assert primitives.verify(witness, e, prior)


def test_closed_handle_refuses_work():
    handle = CryptoPrimitives.load()
    handle.close()
    with pytest.raises(RuntimeError):
        handle.hash_to_prime(b"x")


def test_poe_proves_an_exponentiation(primitives):
    g = primitives.generator
    exponent = 1009 * 1013 * 1019
    result = primitives.exp(g, exponent)
    proof = primitives.poe(g, exponent, result)

    assert primitives.verify_poe(g, exponent, result, proof)
    assert not primitives.verify_poe(g, exponent, result, proof + 1)
    assert not primitives.verify_poe(g, exponent + 2, result, proof)
    assert not primitives.verify_poe(g, exponent, primitives.exp(g, 1009), proof)


def test_transition_checks_both_legs(primitives):
    g = primitives.generator
    prior = primitives.exp(g, 1009 * 1013)
    reduced = primitives.exp(g, 1009)
    new = primitives.exp(g, 1009 * 1019)

    assert primitives.verify_transition(prior, new, 1019, 1013, reduced_state=reduced)
    assert primitives.verify_transition(
        prior, new, 1019, 1013, reduced_state=reduced,
        deletion_proof=primitives.poe(reduced, 1013, prior),
        addition_proof=primitives.poe(reduced, 1019, new))
    assert not primitives.verify_transition(prior, new, 1019, 1013, reduced_state=prior)
    assert not primitives.verify_transition(prior, 12345, 1019, 1013, reduced_state=reduced)


def test_transition_without_reduced_state_checks_combined_relation(primitives):
    g = primitives.generator
    prior = primitives.exp(g, 1009 * 1013)
    new = primitives.exp(g, 1009 * 1019)

    assert primitives.verify_transition(prior, new, 1019, 1013)
    assert not primitives.verify_transition(prior, new, 1021, 1013)
