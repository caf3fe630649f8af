import enum
from dataclasses import dataclass
from typing import Optional

from accumulator_primitives import (
    COIN_ID_BYTES,
    KEY_LENGTH,
    MAX_COIN_ID,
    decode_int,
    encode_coin_id,
    encode_int,
)
from coin_errors import InvalidInput, SelfTransfer

# ---- Validation --------------------------------------------------------------

def validate_owner_key(key) -> bytes:
    if not isinstance(key, (bytes, bytearray)):
        raise InvalidInput("Owner public key must be bytes")
    if len(key) != KEY_LENGTH:
        raise InvalidInput(f"Owner public key must be {KEY_LENGTH} bytes, got {len(key)}")
    if not any(key):
        raise InvalidInput("Owner public key must not be all zero")
    return bytes(key)

def validate_coin_id(coin_id) -> int:
    if isinstance(coin_id, bool) or not isinstance(coin_id, int):
        raise InvalidInput("Coin id must be an integer")
    if not 0 <= coin_id <= MAX_COIN_ID:
        raise InvalidInput(f"Coin id {coin_id} is not an unsigned 64-bit value")
    return coin_id

# ---- Ledger data -------------------------------------------------------------

@dataclass(frozen=True)
class Coin:
    owner: bytes
    id: int

    def encode(self) -> bytes:
        # Canonical hash-to-prime input: key || id (8 bytes, little-endian)
        return bytes(self.owner) + encode_coin_id(self.id)

    def transfer_to(self, new_owner: bytes) -> "Coin":
        return Coin(owner=new_owner, id=self.id)

    def to_payload(self) -> dict:
        return {'owner': bytes(self.owner), 'id': encode_coin_id(self.id)}

    @classmethod
    def from_payload(cls, payload: dict) -> "Coin":
        return cls(owner=validate_owner_key(payload['owner']),
                   id=decode_int(payload['id'], COIN_ID_BYTES))

    def __repr__(self):
        return f"Coin(owner={bytes(self.owner).hex()[:12]}..., id={self.id})"


@dataclass(frozen=True)
class Witness:
    """A witness value together with the accumulator state it verifies against."""
    value: int
    state: int


@dataclass(frozen=True)
class StateDelta:
    sequence: int
    prior_state: int
    new_state: int
    added_product: int = 1
    deleted_product: int = 1
    # State after the batch's deletions, before its additions
    reduced_state: Optional[int] = None
    deletion_proof: Optional[int] = None
    addition_proof: Optional[int] = None

    @property
    def is_pure_addition(self) -> bool:
        return self.deleted_product == 1


class OutcomeKind(enum.Enum):
    INCLUDED = "included"
    REJECTED = "rejected"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class TxOutcome:
    receipt: int
    kind: OutcomeKind
    reason: Optional[str] = None
    # Ledger sequence of the delta that carried the transaction
    sequence: Optional[int] = None


@dataclass(frozen=True)
class Reorg:
    checkpoint: int

# ---- Status ------------------------------------------------------------------

class WitnessStatus(enum.Enum):
    FRESH = "fresh"
    STALE = "stale"
    DISCARDED = "discarded"


class CoinState(enum.Enum):
    UNMINTED = "unminted"
    PENDING_MINT = "pending_mint"
    MINTED = "minted"
    PENDING_SPEND = "pending_spend"
    SPENT = "spent"


class TxStatus(enum.Enum):
    PENDING = "pending"
    INCLUDED = "included"
    FINALIZED = "finalized"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"

# ---- Requests ----------------------------------------------------------------

@dataclass(frozen=True)
class MintRequest:
    coin: Coin

    def __post_init__(self):
        validate_owner_key(self.coin.owner)
        validate_coin_id(self.coin.id)


@dataclass(frozen=True)
class SpendRequest:
    coin: Coin
    new_owner: bytes
    witness: Witness

    def __post_init__(self):
        validate_owner_key(self.coin.owner)
        validate_coin_id(self.coin.id)
        if bytes(self.new_owner) == bytes(self.coin.owner):
            raise SelfTransfer(self.coin.id)
        validate_owner_key(self.new_owner)
        if not isinstance(self.witness, Witness):
            raise InvalidInput("A spend needs a Witness")

    @property
    def output_coin(self) -> Coin:
        return self.coin.transfer_to(bytes(self.new_owner))


@dataclass(frozen=True)
class WitnessUpdateRequest:
    coin: Coin
    witness: Witness
    target: int

    def __post_init__(self):
        validate_owner_key(self.coin.owner)
        validate_coin_id(self.coin.id)
        if self.witness.value <= 0 or self.target <= 0:
            raise InvalidInput("Witness and target state must be positive")

# ---- Transactions ------------------------------------------------------------

@dataclass(frozen=True)
class MintTransaction:
    coin: Coin
    element: int

    kind = "mint"

    def to_payload(self) -> dict:
        return {
            'kind': self.kind,
            'coin': self.coin.to_payload(),
            'element': encode_int(self.element)
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "MintTransaction":
        return cls(coin=Coin.from_payload(payload['coin']),
                   element=decode_int(payload['element']))


@dataclass(frozen=True)
class SpendTransaction:
    input_coin: Coin
    output_coin: Coin
    witness: Witness
    input_element: int
    output_element: int

    kind = "spend"

    def to_payload(self) -> dict:
        return {
            'kind': self.kind,
            'input_coin': self.input_coin.to_payload(),
            'output_coin': self.output_coin.to_payload(),
            'witness': encode_int(self.witness.value),
            'state': encode_int(self.witness.state),
            'input_element': encode_int(self.input_element),
            'output_element': encode_int(self.output_element)
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "SpendTransaction":
        return cls(input_coin=Coin.from_payload(payload['input_coin']),
                   output_coin=Coin.from_payload(payload['output_coin']),
                   witness=Witness(value=decode_int(payload['witness']),
                                   state=decode_int(payload['state'])),
                   input_element=decode_int(payload['input_element']),
                   output_element=decode_int(payload['output_element']))


def transaction_from_payload(payload: dict):
    kinds = {MintTransaction.kind: MintTransaction, SpendTransaction.kind: SpendTransaction}
    try:
        cls = kinds[payload['kind']]
    except (KeyError, TypeError):
        raise InvalidInput("Payload is not a mint or spend transaction") from None
    return cls.from_payload(payload)
