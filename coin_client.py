import logging
from typing import Optional

from accumulator_primitives import CryptoPrimitives
from accumulator_state import AccumulatorStateTracker
from coin_config import ClientConfig
from coin_identity import CoinIdentity
from coin_models import Coin, MintTransaction, Reorg, SpendTransaction, StateDelta, TxOutcome, Witness
from ledger_gateway import LedgerGateway
from transaction_builder import SettledCallback, TransactionBuilder
from witness_manager import WitnessManager

logger = logging.getLogger(__name__)


class CoinClient:
    """
    Wires identity, state tracking, witnesses and transaction building to one
    ledger gateway.

    Ledger events are consumed from a single subscription and each one is
    dispatched to completion before the next, either by awaiting `run()` or
    by calling `pump()`.
    """

    def __init__(self,
                 gateway: LedgerGateway,
                 config: Optional[ClientConfig] = None,
                 primitives: Optional[CryptoPrimitives] = None):
        self.config = config or ClientConfig()
        self.gateway = gateway
        self._owns_primitives = primitives is None
        self.primitives = primitives or CryptoPrimitives.load(self.config)

        self.identity = CoinIdentity(self.primitives)
        self.tracker = AccumulatorStateTracker(
            gateway.query_current_state(),
            self.primitives,
            initial_sequence=gateway.query_sequence(),
            history_limit=self.config.history_limit,
        )
        self.witnesses = WitnessManager(
            self.identity, self.tracker, self.primitives, snapshot_limit=self.config.snapshot_limit)
        self.builder = TransactionBuilder(
            self.identity, self.tracker, self.witnesses, gateway, timeout_rounds=self.config.timeout_rounds)
        self._subscription = gateway.events.subscribe(StateDelta, TxOutcome, Reorg)

    # ---- Event pump ---------------------------------------------------------

    def dispatch(self, event):
        if isinstance(event, StateDelta):
            self.tracker.apply(event)
            self.witnesses.on_delta(event)
            if self.config.auto_refresh:
                self.witnesses.refresh_all()
            self.builder.on_delta(event)
        elif isinstance(event, TxOutcome):
            self.builder.on_outcome(event)
        elif isinstance(event, Reorg):
            discarded = self.tracker.on_reorg(event.checkpoint)
            lost = self.witnesses.on_reorg(discarded)
            self.builder.on_reorg(lost)
            if self.config.auto_refresh:
                self.witnesses.refresh_all()
        else:
            raise TypeError(f"Unexpected ledger event: {event!r}")

    def pump(self) -> int:
        events = self._subscription.drain()
        for event in events:
            self.dispatch(event)
        return len(events)

    async def run(self):
        async for event in self._subscription:
            self.dispatch(event)
        logger.info("Ledger subscription closed")

    def close(self):
        self._subscription.cancel()
        if self._owns_primitives:
            self.primitives.close()

    # ---- Operations ---------------------------------------------------------

    def mint(self, owner: bytes, coin_id: int, on_settled: Optional[SettledCallback] = None) -> MintTransaction:
        return self.builder.build_mint(Coin(owner=owner, id=coin_id), on_settled)

    def spend(self, coin: Coin, new_owner: bytes, on_settled: Optional[SettledCallback] = None) -> SpendTransaction:
        witness = self.witnesses.fresh_witness(coin.id)
        return self.builder.build_spend(coin, new_owner, witness, on_settled)

    def receive(self, coin: Coin, sequence: int) -> Witness:
        """Takes custody of a coin that was transferred to us in delta `sequence`."""
        self.witnesses.issue_witness(coin, self.tracker.delta_at(sequence))
        self.builder.mark_minted(coin)
        return self.witnesses.fresh_witness(coin.id)
