import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from accumulator_state import AccumulatorStateTracker
from coin_errors import (
    DuplicateCoinID,
    InvalidInput,
    LedgerRejected,
    OperationInProgress,
    StaleCheckpoint,
    StaleWitness,
    TimedOut,
)
from coin_identity import CoinIdentity
from coin_models import (
    Coin,
    CoinState,
    MintRequest,
    MintTransaction,
    OutcomeKind,
    SpendRequest,
    SpendTransaction,
    StateDelta,
    TxOutcome,
    TxStatus,
    Witness,
)
from ledger_gateway import LedgerGateway
from witness_manager import WitnessManager

logger = logging.getLogger(__name__)

# on_settled(receipt, error); error is None on success
SettledCallback = Callable[[int, Optional[Exception]], None]


@dataclass
class PendingTransaction:
    receipt: int
    transaction: object
    status: TxStatus = TxStatus.PENDING
    rounds_waited: int = 0
    reason: Optional[str] = None
    on_settled: Optional[SettledCallback] = None

    @property
    def coin(self) -> Coin:
        if isinstance(self.transaction, SpendTransaction):
            return self.transaction.input_coin
        return self.transaction.coin


class TransactionBuilder:
    """
    Builds, validates and submits mint and spend transactions, then follows
    their outcomes through the coin lifecycle:

        UNMINTED -> PENDING_MINT -> MINTED -> PENDING_SPEND -> SPENT

    Rejected mints fall back to UNMINTED; rejected or timed-out spends fall
    back to MINTED. Every local check runs before the gateway is called.
    """

    def __init__(self,
                 identity: CoinIdentity,
                 tracker: AccumulatorStateTracker,
                 witnesses: WitnessManager,
                 gateway: LedgerGateway,
                 timeout_rounds: int = 5):
        self.identity = identity
        self.tracker = tracker
        self.witnesses = witnesses
        self.gateway = gateway
        self.timeout_rounds = timeout_rounds
        self._transactions: Dict[int, PendingTransaction] = {}
        self._in_flight: Dict[int, int] = {}  # coin id -> receipt
        self._lifecycle: Dict[Coin, CoinState] = {}

    # ---- Builders -----------------------------------------------------------

    def build_mint(self, coin: Coin, on_settled: Optional[SettledCallback] = None) -> MintTransaction:
        request = MintRequest(coin=coin)
        self._check_idle(coin.id)
        if self._locally_active(coin.id) or self.gateway.is_coin_active(coin.id):
            raise DuplicateCoinID(coin.id)

        transaction = MintTransaction(coin=request.coin, element=self.identity.element_of(request.coin))
        self._submit(transaction, self.gateway.submit_mint, CoinState.PENDING_MINT, on_settled)
        return transaction

    def build_spend(self,
                    coin: Coin,
                    new_owner: bytes,
                    witness: Witness,
                    on_settled: Optional[SettledCallback] = None) -> SpendTransaction:
        request = SpendRequest(coin=coin, new_owner=new_owner, witness=witness)
        self._check_idle(coin.id)

        output_coin = request.output_coin
        input_element = self.identity.element_of(request.coin)
        output_element = self.identity.element_of(output_coin)

        current = self.tracker.current_state()
        if witness.state != current or not self.witnesses.verify_witness(request.coin, witness, current):
            raise StaleWitness(f"Witness for coin {coin.id} does not verify against the current state")

        transaction = SpendTransaction(
            input_coin=request.coin,
            output_coin=output_coin,
            witness=request.witness,
            input_element=input_element,
            output_element=output_element,
        )
        self._submit(transaction, self.gateway.submit_spend, CoinState.PENDING_SPEND, on_settled)
        return transaction

    def _check_idle(self, coin_id: int):
        receipt = self._in_flight.get(coin_id)
        if receipt is not None:
            raise OperationInProgress(coin_id, receipt)

    def _locally_active(self, coin_id: int) -> bool:
        for coin, state in self._lifecycle.items():
            if coin.id == coin_id and state in (CoinState.MINTED, CoinState.PENDING_SPEND):
                return True
        return False

    def _submit(self, transaction, submit, pending_state: CoinState, on_settled):
        coin = transaction.input_coin if isinstance(transaction, SpendTransaction) else transaction.coin
        receipt = submit(transaction)
        self._transactions[receipt] = PendingTransaction(
            receipt=receipt, transaction=transaction, on_settled=on_settled)
        self._in_flight[coin.id] = receipt
        self._lifecycle[coin] = pending_state
        logger.info(f"Submitted {transaction.kind} for coin {coin.id} as {receipt}")

    # ---- Queries ------------------------------------------------------------

    def status(self, receipt: int) -> Optional[TxStatus]:
        pending = self._transactions.get(receipt)
        return pending.status if pending else None

    def pending_receipt(self, coin_id: int) -> Optional[int]:
        return self._in_flight.get(coin_id)

    def lifecycle(self, coin: Coin) -> CoinState:
        return self._lifecycle.get(coin, CoinState.UNMINTED)

    def mark_minted(self, coin: Coin):
        self._lifecycle[coin] = CoinState.MINTED

    def cancel(self, receipt: int) -> bool:
        """Stops reporting the outcome of `receipt`; the submission stands."""
        pending = self._transactions.get(receipt)
        if pending is None or pending.on_settled is None:
            return False
        pending.on_settled = None
        return True

    # ---- Ledger events ------------------------------------------------------

    def on_outcome(self, event: TxOutcome):
        pending = self._transactions.get(event.receipt)
        if pending is None:
            logger.debug(f"Ignoring outcome for unknown receipt {event.receipt}")
            return

        if event.kind is OutcomeKind.INCLUDED:
            if pending.status is TxStatus.PENDING:
                pending.status = TxStatus.INCLUDED
            return
        if pending.status in (TxStatus.FINALIZED, TxStatus.REJECTED):
            return

        self._release(pending)
        if event.kind is OutcomeKind.FINALIZED:
            pending.status = TxStatus.FINALIZED
            self._settle(pending, self._finalized(pending, event))
        else:
            pending.status = TxStatus.REJECTED
            pending.reason = event.reason
            self._rejected(pending)
            self._settle(pending, LedgerRejected(pending.receipt, event.reason or "unknown"))

    def _finalized(self, pending: PendingTransaction, event: TxOutcome) -> Optional[Exception]:
        transaction = pending.transaction
        if isinstance(transaction, SpendTransaction):
            self._lifecycle[transaction.input_coin] = CoinState.SPENT
            self.witnesses.discard(transaction.input_coin.id)
            logger.info(f"Coin {transaction.input_coin.id} spent")
            return None

        self._lifecycle[transaction.coin] = CoinState.MINTED
        try:
            batch = self.tracker.delta_at(event.sequence)
        except StaleCheckpoint:
            logger.warning(f"Delta {event.sequence} for mint {pending.receipt} is not retained")
            return None
        try:
            self.witnesses.issue_witness(transaction.coin, batch)
        except InvalidInput as e:
            logger.error(f"No witness for minted coin {transaction.coin.id}: {e}")
            return e
        return None

    def _rejected(self, pending: PendingTransaction):
        transaction = pending.transaction
        logger.warning(f"Transaction {pending.receipt} rejected: {pending.reason}")
        if isinstance(transaction, MintTransaction):
            self._lifecycle.pop(transaction.coin, None)
            return
        self._lifecycle[transaction.input_coin] = CoinState.MINTED
        self._recheck_witness(transaction.input_coin)

    def _recheck_witness(self, coin: Coin):
        witness = self.witnesses.get(coin.id)
        if witness is None:
            return
        if not self.witnesses.verify_witness(coin, witness, self.tracker.current_state()):
            self.witnesses.mark_stale(coin.id)

    def on_delta(self, delta: StateDelta):
        """
        Counts one ledger round for every pending transaction. Outcomes for a
        delta are published after the delta itself, so a transaction only
        times out on the round after its last allowed one.
        """
        for pending in self._transactions.values():
            if pending.status is not TxStatus.PENDING:
                continue
            if pending.rounds_waited >= self.timeout_rounds:
                self._timed_out(pending)
            else:
                pending.rounds_waited += 1

    def _timed_out(self, pending: PendingTransaction):
        pending.status = TxStatus.TIMED_OUT
        coin = pending.coin
        self._release(pending)
        if isinstance(pending.transaction, SpendTransaction):
            self._lifecycle[coin] = CoinState.MINTED
            # Unknown why it timed out: the witness must be re-derived before reuse
            self.witnesses.mark_stale(coin.id)
        else:
            self._lifecycle.pop(coin, None)
        logger.warning(f"Transaction {pending.receipt} timed out after {pending.rounds_waited} rounds")
        self._settle(pending, TimedOut(pending.receipt, pending.rounds_waited))

    def on_reorg(self, lost_coin_ids):
        lost = set(lost_coin_ids)
        for coin, state in list(self._lifecycle.items()):
            if coin.id in lost and state is CoinState.MINTED:
                # The mint itself was undone
                self._lifecycle.pop(coin)

    def _release(self, pending: PendingTransaction):
        # A retry may already own the slot after a timeout
        if self._in_flight.get(pending.coin.id) == pending.receipt:
            del self._in_flight[pending.coin.id]

    def _settle(self, pending: PendingTransaction, error: Optional[Exception]):
        callback = pending.on_settled
        if callback is None:
            return
        pending.on_settled = None
        callback(pending.receipt, error)
