import hashlib
from typing import Optional

from sympy import nextprime

from coin_errors import InvalidInput

# ---- Chain-constant parameters (mirror contract) ----------------------------

# RSA-2048 factoring challenge modulus; its factorisation is unknown.
MODULUS = int(
    "25195908475657893494027183240048398571429282126204032027777137836043662020707595556264018525880784406918290641249515082189298559149176184502808489120072844992687392807287776735971418347270261896375014971824691165077613379859095700097330459748808428401797429100642458691817195118746121515172654632282216869987549182422433637259085141865462043576798423387184774447920739934236584823824281198163815010674810451660377306056201619676256133844143603833904414952634432190114657544454178424020924616515723350778707749817125772467962926386356373289912154831438167899885040445364023527381951378636564391212010397122822120720357"
)
GENERATOR = 2

MODULUS_BYTES = 256
KEY_LENGTH = 32
COIN_ID_BYTES = 8
MAX_COIN_ID = 2**64 - 1

# ---- Fixed-width codec -------------------------------------------------------

def encode_int(value: int, width: int = MODULUS_BYTES) -> bytes:
    # Little-endian, zero-padded to the accumulator width
    if not isinstance(value, int) or value < 0 or value.bit_length() > width * 8:
        raise InvalidInput(f"Value does not fit in {width} bytes")
    return value.to_bytes(width, "little")

def decode_int(data: bytes, width: int = MODULUS_BYTES) -> int:
    if len(data) != width:
        raise InvalidInput(f"Expected {width} bytes, got {len(data)}")
    return int.from_bytes(data, "little")

def encode_coin_id(coin_id: int) -> bytes:
    return encode_int(coin_id, COIN_ID_BYTES)

def product(values) -> int:
    result = 1
    for v in values:
        result *= v
    return result

# ---- Capability handle -------------------------------------------------------

class CryptoPrimitives:
    """
    Number-theory primitives consumed by the client.

    Components receive one handle at construction. `load()` and `close()` are
    the process-wide initialisation and teardown boundary; a closed handle
    refuses further work.
    """

    def __init__(self, modulus: int = MODULUS, generator: int = GENERATOR):
        self.modulus = modulus
        self.generator = generator
        self.closed = False

    @classmethod
    def load(cls, config=None) -> "CryptoPrimitives":
        if config is None:
            return cls()
        return cls(modulus=config.modulus, generator=config.generator)

    def close(self):
        self.closed = True

    def _check_open(self):
        if self.closed:
            raise RuntimeError("Crypto primitives have been closed")

    def hash_to_prime(self, data: bytes) -> int:
        self._check_open()
        digest = hashlib.blake2b(data, digest_size=32).digest()
        return int(nextprime(int.from_bytes(digest, "little")))

    def exp(self, base: int, exponent: int) -> int:
        self._check_open()
        return pow(base, exponent, self.modulus)

    def verify(self, witness: int, element: int, state: int) -> bool:
        return self.exp(witness, element) == state % self.modulus

    def witness_after_addition(self, witness: int, added_product: int) -> int:
        return self.exp(witness, added_product)

    def witness_after_deletion(self,
                               element: int,
                               witness: int,
                               added_product: int,
                               deleted_product: int,
                               target_state: int) -> int:
        """
        Returns the witness for `element` against `target_state`, where
        target_state^deleted_product == (witness^element)^added_product.
        Raises ValueError when element shares a factor with the deletions.
        """
        advanced = self.exp(witness, added_product)
        return self.shamir_trick(advanced, target_state, element, deleted_product)

    # ---- Proofs of exponentiation ------------------------------------------

    def _challenge(self, base: int, exponent: int, result: int) -> int:
        width = max(1, (exponent.bit_length() + 7) // 8)
        return self.hash_to_prime(
            encode_int(base % self.modulus) + encode_int(result % self.modulus) + exponent.to_bytes(width, "little"))

    def poe(self, base: int, exponent: int, result: int) -> int:
        """Wesolowski proof that base^exponent == result."""
        l = self._challenge(base, exponent, result)
        return self.exp(base, exponent // l)

    def verify_poe(self, base: int, exponent: int, result: int, proof: int) -> bool:
        l = self._challenge(base, exponent, result)
        lhs = (self.exp(proof, l) * self.exp(base, exponent % l)) % self.modulus
        return lhs == result % self.modulus

    def verify_transition(self,
                          prior_state: int,
                          new_state: int,
                          added_product: int,
                          deleted_product: int,
                          reduced_state: Optional[int] = None,
                          deletion_proof: Optional[int] = None,
                          addition_proof: Optional[int] = None) -> bool:
        """
        Checks that a batch moved the accumulator from `prior_state` to
        `new_state` by removing `deleted_product` and then adding
        `added_product`.

        With the intermediate `reduced_state` each leg is checked on its own,
        through its proof when one is supplied. Without it only the combined
        relation new^deleted == prior^added can be checked.
        """
        if reduced_state is None:
            return self.exp(new_state, deleted_product) == self.exp(prior_state, added_product)
        return (self._check_leg(reduced_state, deleted_product, prior_state, deletion_proof)
                and self._check_leg(reduced_state, added_product, new_state, addition_proof))

    def _check_leg(self, base: int, exponent: int, result: int, proof: Optional[int]) -> bool:
        if proof is None:
            return self.exp(base, exponent) == result % self.modulus
        return self.verify_poe(base, exponent, result, proof)

    def shamir_trick(self, xth_root: int, yth_root: int, x: int, y: int) -> int:
        # Combines an x-th and a y-th root of the same value into its xy-th root
        if self.exp(xth_root, x) != self.exp(yth_root, y):
            raise ValueError("Roots do not share a common power")
        try:
            a = pow(x, -1, y)
        except ValueError:
            raise ValueError("Exponents are not coprime") from None
        b = (1 - a * x) // y
        return (self.exp(xth_root, b) * self.exp(yth_root, a)) % self.modulus
