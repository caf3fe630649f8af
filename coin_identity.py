from functools import lru_cache

from accumulator_primitives import CryptoPrimitives
from coin_models import Coin, validate_coin_id, validate_owner_key


class CoinIdentity:
    """Derives the accumulator element bound to an (owner, id) pair."""

    def __init__(self, primitives: CryptoPrimitives):
        self.primitives = primitives
        # Derivation is pure, so results are memoised per instance
        self._derive = lru_cache(maxsize=1024)(self._derive_uncached)

    def derive_element(self, owner: bytes, coin_id: int) -> int:
        return self._derive(validate_owner_key(owner), validate_coin_id(coin_id))

    def element_of(self, coin: Coin) -> int:
        return self.derive_element(coin.owner, coin.id)

    def _derive_uncached(self, owner: bytes, coin_id: int) -> int:
        return self.primitives.hash_to_prime(Coin(owner, coin_id).encode())
