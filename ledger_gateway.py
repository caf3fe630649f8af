import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, Type

from accumulator_primitives import decode_int
from coin_models import (
    MintTransaction,
    OutcomeKind,
    Reorg,
    SpendTransaction,
    StateDelta,
    TxOutcome,
    transaction_from_payload,
)

logger = logging.getLogger(__name__)

_CLOSED = object()

# ---- Event stream ------------------------------------------------------------

class Subscription:
    """
    One subscriber's ordered view of an EventStream.

    Events are queued in publication order. The subscription is an async
    iterator; `drain()` takes whatever is queued without waiting. `cancel()`
    unsubscribes and ends iteration.
    """

    def __init__(self, stream: "EventStream", event_types: Tuple[Type, ...]):
        self._stream = stream
        self.event_types = event_types
        self.cancelled = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def accepts(self, event) -> bool:
        return not self.event_types or isinstance(event, self.event_types)

    def deliver(self, event):
        self._queue.put_nowait(event)

    def drain(self) -> List:
        events = []
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if event is not _CLOSED:
                events.append(event)

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        self._stream.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        event = await self._queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event


class EventStream:
    """In-order fan-out of ledger events to subscribers."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, *event_types: Type) -> Subscription:
        subscription = Subscription(self, event_types)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event):
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.deliver(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

# ---- Gateway interface -------------------------------------------------------

class LedgerGateway(ABC):
    """
    Submission and query surface of the ledger node. Outcomes, state deltas
    and reorgs are published on `events`.
    """

    events: EventStream

    @abstractmethod
    def submit_mint(self, transaction: MintTransaction) -> int:
        ...

    @abstractmethod
    def submit_spend(self, transaction: SpendTransaction) -> int:
        ...

    @abstractmethod
    def query_current_state(self) -> int:
        ...

    @abstractmethod
    def query_sequence(self) -> int:
        ...

    @abstractmethod
    def is_coin_active(self, coin_id: int) -> bool:
        ...

    def submit(self, payload: dict) -> int:
        """Submits a transaction in its serialized payload form."""
        transaction = transaction_from_payload(payload)
        if isinstance(transaction, SpendTransaction):
            return self.submit_spend(transaction)
        return self.submit_mint(transaction)

# ---- Xian contract gateway ---------------------------------------------------

class ContractingGateway(LedgerGateway):
    """
    Gateway to the `con_accumulator_coin` contract through a contracting
    client. Owner keys sign as their hex address. Submissions the contract
    refuses are reported as REJECTED outcomes on the event stream, and
    `finalize_batch()` closes a ledger round.
    """

    def __init__(self, contract, operator: str = "operator", events: Optional[EventStream] = None):
        self.contract = contract
        self.operator = operator
        self.events = events or EventStream()
        self._receipts = itertools.count(1)
        # contract tx id -> receipt
        self._pending: Dict[int, int] = {}

    def query_current_state(self) -> int:
        return self.contract.get_state()

    def query_sequence(self) -> int:
        return self.contract.get_metadata()['sequence']

    def is_coin_active(self, coin_id: int) -> bool:
        return self.contract.get_coin(coin_id=coin_id)['exists']

    def submit_mint(self, transaction: MintTransaction) -> int:
        payload = transaction.to_payload()
        owner = payload['coin']['owner'].hex()
        return self._submit(
            self.contract.mint,
            coin_id=transaction.coin.id,
            owner=owner,
            element=decode_int(payload['element']),
            signer=owner,
        )

    def submit_spend(self, transaction: SpendTransaction) -> int:
        payload = transaction.to_payload()
        owner = payload['input_coin']['owner'].hex()
        return self._submit(
            self.contract.spend,
            coin_id=transaction.input_coin.id,
            input_owner=owner,
            output_owner=payload['output_coin']['owner'].hex(),
            input_element=decode_int(payload['input_element']),
            output_element=decode_int(payload['output_element']),
            witness=decode_int(payload['witness']),
            signer=owner,
        )

    def _submit(self, method, **kwargs) -> int:
        receipt = next(self._receipts)
        try:
            tx_id = method(**kwargs)
        except AssertionError as e:
            logger.warning(f"Transaction {receipt} rejected by the ledger: {e}")
            self.events.publish(TxOutcome(receipt=receipt, kind=OutcomeKind.REJECTED, reason=str(e)))
            return receipt
        self._pending[tx_id] = receipt
        logger.debug(f"Transaction {receipt} queued as ledger tx {tx_id}")
        return receipt

    def finalize_batch(self) -> StateDelta:
        result = self.contract.finalize_batch(signer=self.operator)
        delta = StateDelta(
            sequence=result['sequence'],
            prior_state=result['prior_state'],
            new_state=result['new_state'],
            added_product=result['added_product'],
            deleted_product=result['deleted_product'],
            reduced_state=result['reduced_state'],
        )
        self.events.publish(delta)
        for tx_id in result['included']:
            receipt = self._pending.pop(tx_id, None)
            if receipt is None:
                continue
            self.events.publish(TxOutcome(receipt=receipt, kind=OutcomeKind.INCLUDED, sequence=delta.sequence))
            self.events.publish(TxOutcome(receipt=receipt, kind=OutcomeKind.FINALIZED, sequence=delta.sequence))
        logger.info(f"Finalized batch {delta.sequence} with {len(result['included'])} transactions")
        return delta

    def announce_reorg(self, checkpoint: int):
        self.events.publish(Reorg(checkpoint=checkpoint))
