import itertools
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient

from accumulator_primitives import CryptoPrimitives, product
from accumulator_state import AccumulatorStateTracker
from coin_identity import CoinIdentity
from coin_models import Coin, StateDelta
from ledger_gateway import ContractingGateway, EventStream, LedgerGateway
from transaction_builder import TransactionBuilder
from witness_manager import WitnessManager

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONTRACT_PATH = PROJECT_ROOT / "con_accumulator_coin.py"
SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

ALICE = bytes(range(1, 33))
BOB = bytes(range(101, 133))
CAROL = bytes([0xC0] * 32)


class SimulatedLedger:
    """
    Keeps the active element multiset and publishes deltas with the same
    algebra as the contract: A = g^(product of active elements) mod N.
    """

    def __init__(self, primitives: CryptoPrimitives):
        self.primitives = primitives
        self.active = []
        self.sequence = 0
        self.state = primitives.generator

    def batch(self, added=(), deleted=()) -> StateDelta:
        primitives = self.primitives
        for element in deleted:
            self.active.remove(element)
        reduced = primitives.exp(primitives.generator, product(self.active))
        self.active.extend(added)
        new_state = primitives.exp(primitives.generator, product(self.active))
        added_product, deleted_product = product(added), product(deleted)
        self.sequence += 1
        delta = StateDelta(
            sequence=self.sequence,
            prior_state=self.state,
            new_state=new_state,
            added_product=added_product,
            deleted_product=deleted_product,
            reduced_state=reduced,
            deletion_proof=primitives.poe(reduced, deleted_product, self.state),
            addition_proof=primitives.poe(reduced, added_product, new_state),
        )
        self.state = new_state
        return delta


class StubGateway(LedgerGateway):
    """Records submissions; outcomes are published by the test."""

    def __init__(self, state: int, sequence: int = 0):
        self.events = EventStream()
        self.state = state
        self.sequence = sequence
        self.active = set()
        self.submitted = []
        self._receipts = itertools.count(1)

    def submit_mint(self, transaction):
        self.submitted.append(transaction)
        return next(self._receipts)

    def submit_spend(self, transaction):
        self.submitted.append(transaction)
        return next(self._receipts)

    def query_current_state(self):
        return self.state

    def query_sequence(self):
        return self.sequence

    def is_coin_active(self, coin_id):
        return coin_id in self.active


@pytest.fixture(scope="session")
def primitives():
    return CryptoPrimitives()


@pytest.fixture(scope="session")
def identity(primitives):
    return CoinIdentity(primitives)


@pytest.fixture
def ledger(primitives):
    return SimulatedLedger(primitives)


@pytest.fixture
def tracker(ledger):
    return AccumulatorStateTracker(ledger.state, ledger.primitives, history_limit=16)


@pytest.fixture
def witnesses(identity, tracker, primitives):
    return WitnessManager(identity, tracker, primitives, snapshot_limit=4)


@pytest.fixture
def stub_gateway(ledger):
    return StubGateway(ledger.state)


@pytest.fixture
def builder(identity, tracker, witnesses, stub_gateway):
    return TransactionBuilder(identity, tracker, witnesses, stub_gateway, timeout_rounds=3)


@pytest.fixture
def alice_coin():
    return Coin(owner=ALICE, id=42)


@pytest.fixture
def client():
    client = ContractingClient(signer="operator", metering=False)
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))
    return client


@pytest.fixture
def contract(client):
    code = CONTRACT_PATH.read_text()
    client.submit(code, name="con_accumulator_coin", owner=None)
    return client.get_contract("con_accumulator_coin")


@pytest.fixture
def gateway(contract):
    return ContractingGateway(contract, operator="operator")
