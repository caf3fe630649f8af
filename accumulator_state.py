import logging
from typing import List

from accumulator_primitives import CryptoPrimitives
from coin_errors import DeltaOutOfOrder, InvalidDelta, StaleCheckpoint, UnknownCheckpoint
from coin_models import StateDelta

logger = logging.getLogger(__name__)


class AccumulatorStateTracker:
    """
    Follows the ledger's accumulator value and keeps the ordered log of state
    deltas needed to replay witness updates.

    Deltas must arrive in ledger order: each one has to start at the current
    state and carry the next sequence number, and its new state must follow
    from the prior state and the batch products. Only the newest
    `history_limit` deltas are retained; states older than that become
    unknown checkpoints.
    """

    def __init__(self,
                 initial_state: int,
                 primitives: CryptoPrimitives,
                 initial_sequence: int = 0,
                 history_limit: int = 256):
        self.primitives = primitives
        self.history_limit = history_limit
        self.epoch = 0
        self._base_state = initial_state
        self._base_sequence = initial_sequence
        self._deltas: List[StateDelta] = []

    def current_state(self) -> int:
        return self._deltas[-1].new_state if self._deltas else self._base_state

    @property
    def current_sequence(self) -> int:
        return self._deltas[-1].sequence if self._deltas else self._base_sequence

    def apply(self, delta: StateDelta):
        expected = self.current_sequence + 1
        if delta.sequence != expected:
            raise DeltaOutOfOrder(f"Expected delta {expected}, got {delta.sequence}")
        if delta.prior_state != self.current_state():
            raise DeltaOutOfOrder(f"Delta {delta.sequence} does not start at the tracked state")
        if not self._verify(delta):
            raise InvalidDelta(delta.sequence)

        self._deltas.append(delta)
        if len(self._deltas) > self.history_limit:
            dropped = self._deltas.pop(0)
            self._base_state = dropped.new_state
            self._base_sequence = dropped.sequence
        logger.debug(f"Applied delta {delta.sequence} (deletions: {not delta.is_pure_addition})")

    def _verify(self, delta: StateDelta) -> bool:
        return self.primitives.verify_transition(
            delta.prior_state,
            delta.new_state,
            delta.added_product,
            delta.deleted_product,
            reduced_state=delta.reduced_state,
            deletion_proof=delta.deletion_proof,
            addition_proof=delta.addition_proof,
        )

    def _state_at(self, index: int) -> int:
        return self._base_state if index == 0 else self._deltas[index - 1].new_state

    def _index_of(self, state: int) -> int:
        # Most recent occurrence wins; empty batches repeat a state
        for index in range(len(self._deltas), -1, -1):
            if self._state_at(index) == state:
                return index
        raise UnknownCheckpoint(state)

    def knows(self, state: int) -> bool:
        try:
            self._index_of(state)
        except UnknownCheckpoint:
            return False
        return True

    def deltas_since(self, state: int) -> List[StateDelta]:
        return list(self._deltas[self._index_of(state):])

    def path(self, old_state: int, target: int) -> List[StateDelta]:
        """Contiguous deltas leading from `old_state` to `target`."""
        if old_state == target:
            return []
        deltas = self.deltas_since(old_state)
        for i, delta in enumerate(deltas):
            if delta.new_state == target:
                return deltas[:i + 1]
        raise StaleCheckpoint("Target state is not reachable from the witness's state")

    def delta_at(self, sequence: int) -> StateDelta:
        index = sequence - self._base_sequence - 1
        if not 0 <= index < len(self._deltas):
            raise StaleCheckpoint(f"Delta {sequence} is not in the retained history")
        return self._deltas[index]

    def on_reorg(self, checkpoint: int) -> List[StateDelta]:
        """
        Truncates the log back to `checkpoint` and returns the discarded
        deltas. Every consumer holding data derived from a discarded state
        must treat it as stale; `epoch` changes so in-flight work can tell.
        """
        index = self._index_of(checkpoint)
        discarded = self._deltas[index:]
        del self._deltas[index:]
        self.epoch += 1
        logger.warning(f"Reorg to sequence {self.current_sequence} discarded {len(discarded)} deltas")
        return discarded
