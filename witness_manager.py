import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from accumulator_primitives import CryptoPrimitives, product
from accumulator_state import AccumulatorStateTracker
from coin_errors import InvalidInput, ReorgInvalidatesState, StaleCheckpoint, StaleWitness
from coin_identity import CoinIdentity
from coin_models import Coin, StateDelta, Witness, WitnessStatus, WitnessUpdateRequest

logger = logging.getLogger(__name__)


@dataclass
class WitnessRecord:
    coin: Coin
    element: int
    witness: Witness
    status: WitnessStatus
    # Earlier witnesses of the same coin, oldest first
    snapshots: List[Witness] = field(default_factory=list)


class WitnessManager:
    """
    Issues membership witnesses for minted coins and carries them forward as
    the tracked accumulator state advances.

    Witnesses are keyed by coin id. A record is FRESH while its witness
    targets the tracker's current state, STALE once a newer delta arrives,
    and DISCARDED when the coin is spent or its state is lost to a reorg.
    """

    def __init__(self,
                 identity: CoinIdentity,
                 tracker: AccumulatorStateTracker,
                 primitives: CryptoPrimitives,
                 snapshot_limit: int = 8):
        self.identity = identity
        self.tracker = tracker
        self.primitives = primitives
        self.snapshot_limit = snapshot_limit
        self._records: Dict[int, WitnessRecord] = {}

    # ---- Witness algebra ----------------------------------------------------

    def verify_witness(self, coin: Coin, witness: Witness, state: int) -> bool:
        element = self.identity.element_of(coin)
        return self.primitives.verify(witness.value, element, state)

    def issue_witness(self, coin: Coin, batch: StateDelta) -> Witness:
        """
        Witness for a coin whose element was added in `batch`: the prior
        state raised to the product of every other element the batch added,
        then carried across the batch's deletions if it had any.
        """
        element = self.identity.element_of(coin)
        if batch.added_product % element != 0:
            raise InvalidInput(f"Coin {coin.id} was not added in delta {batch.sequence}")

        value = self.primitives.exp(batch.prior_state, batch.added_product // element)
        if not batch.is_pure_addition:
            try:
                value = self.primitives.witness_after_deletion(
                    element, value, 1, batch.deleted_product, batch.new_state)
            except ValueError as e:
                raise InvalidInput(f"Delta {batch.sequence} is inconsistent for coin {coin.id}: {e}") from e

        witness = Witness(value=value, state=batch.new_state)
        if not self.primitives.verify(witness.value, element, witness.state):
            raise InvalidInput(f"Issued witness for coin {coin.id} does not verify")
        self.track(coin, witness)
        logger.info(f"Issued witness for coin {coin.id} at delta {batch.sequence}")
        return witness

    def update_witness(self, coin: Coin, witness: Witness, target: int) -> Witness:
        request = WitnessUpdateRequest(coin=coin, witness=witness, target=target)
        epoch = self.tracker.epoch
        path = self.tracker.path(request.witness.state, request.target)
        element = self.identity.element_of(request.coin)
        if not path:
            if not self.primitives.verify(request.witness.value, element, request.target):
                raise StaleWitness(f"Witness for coin {coin.id} does not verify at its own state")
            return request.witness

        added = product(d.added_product for d in path)
        deleted = product(d.deleted_product for d in path)
        if deleted == 1:
            value = self.primitives.witness_after_addition(request.witness.value, added)
        else:
            try:
                value = self.primitives.witness_after_deletion(
                    element, request.witness.value, added, deleted, request.target)
            except ValueError as e:
                raise StaleWitness(f"Witness for coin {coin.id} cannot be carried across deletions: {e}") from e

        if self.tracker.epoch != epoch:
            raise ReorgInvalidatesState(f"Reorg while updating witness for coin {coin.id}")

        updated = Witness(value=value, state=request.target)
        if not self.primitives.verify(updated.value, element, updated.state):
            raise StaleWitness(f"Updated witness for coin {coin.id} does not verify")
        logger.debug(f"Advanced witness for coin {coin.id} across {len(path)} deltas")
        return updated

    # ---- Tracked witnesses --------------------------------------------------

    def track(self, coin: Coin, witness: Witness) -> WitnessRecord:
        record = WitnessRecord(
            coin=coin,
            element=self.identity.element_of(coin),
            witness=witness,
            status=self._status_for(witness),
        )
        self._records[coin.id] = record
        return record

    def get(self, coin_id: int) -> Optional[Witness]:
        record = self._records.get(coin_id)
        if record is None or record.status is WitnessStatus.DISCARDED:
            return None
        return record.witness

    def status(self, coin_id: int) -> Optional[WitnessStatus]:
        record = self._records.get(coin_id)
        return record.status if record else None

    def discard(self, coin_id: int):
        record = self._records.get(coin_id)
        if record is not None:
            record.status = WitnessStatus.DISCARDED
            record.snapshots.clear()

    def mark_stale(self, coin_id: int):
        record = self._records.get(coin_id)
        if record is not None and record.status is WitnessStatus.FRESH:
            record.status = WitnessStatus.STALE

    def refresh(self, coin_id: int) -> Witness:
        record = self._records.get(coin_id)
        if record is None or record.status is WitnessStatus.DISCARDED:
            raise StaleWitness(f"No live witness for coin {coin_id}")
        updated = self.update_witness(record.coin, record.witness, self.tracker.current_state())
        self._advance(record, updated)
        return updated

    def refresh_all(self) -> List[int]:
        refreshed = []
        for coin_id, record in list(self._records.items()):
            if record.status is not WitnessStatus.STALE:
                continue
            try:
                self.refresh(coin_id)
            except (StaleCheckpoint, StaleWitness) as e:
                logger.warning(f"Witness for coin {coin_id} stays stale: {e}")
                continue
            refreshed.append(coin_id)
        return refreshed

    def fresh_witness(self, coin_id: int) -> Witness:
        record = self._records.get(coin_id)
        if record is not None and record.status is WitnessStatus.FRESH:
            return record.witness
        return self.refresh(coin_id)

    # ---- State events -------------------------------------------------------

    def on_delta(self, delta: StateDelta):
        for record in self._records.values():
            if record.status is WitnessStatus.FRESH and record.witness.state != delta.new_state:
                record.status = WitnessStatus.STALE

    def on_reorg(self, discarded: List[StateDelta]) -> List[int]:
        """
        Rolls every record whose state was discarded back to its newest
        snapshot the tracker still knows and marks it STALE. Returns the ids
        of coins left without any usable witness.
        """
        lost = []
        for coin_id, record in self._records.items():
            if record.status is WitnessStatus.DISCARDED:
                continue
            record.snapshots = [w for w in record.snapshots if self.tracker.knows(w.state)]
            if not self.tracker.knows(record.witness.state):
                if not record.snapshots:
                    record.status = WitnessStatus.DISCARDED
                    lost.append(coin_id)
                    continue
                record.witness = record.snapshots.pop()
            record.status = self._status_for(record.witness)
        if discarded:
            logger.warning(f"Reorg discarded {len(discarded)} deltas; {len(lost)} witnesses lost")
        return lost

    def _advance(self, record: WitnessRecord, witness: Witness):
        if witness != record.witness:
            record.snapshots.append(record.witness)
            del record.snapshots[:-self.snapshot_limit]
            record.witness = witness
        record.status = self._status_for(witness)

    def _status_for(self, witness: Witness) -> WitnessStatus:
        if witness.state == self.tracker.current_state():
            return WitnessStatus.FRESH
        return WitnessStatus.STALE
