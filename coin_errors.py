"""
Error taxonomy for the accumulator coin client.

Local-consistency errors are raised synchronously before any ledger
interaction. LedgerRejected and TimedOut are delivered through the
`on_settled` callback once a submitted transaction's outcome resolves.
"""


class AccumulatorError(Exception):
    """Base class for every error raised by the client."""


class InvalidInput(AccumulatorError, ValueError):
    """Malformed owner key, coin id, witness or request."""


class DuplicateCoinID(AccumulatorError):
    def __init__(self, coin_id: int):
        self.coin_id = coin_id
        super().__init__(f"Coin id {coin_id} is already active")


class SelfTransfer(AccumulatorError):
    def __init__(self, coin_id: int):
        self.coin_id = coin_id
        super().__init__(f"Coin {coin_id} cannot be spent to its current owner")


class StaleWitness(AccumulatorError):
    """The witness does not verify against the state it is checked against."""


class StaleCheckpoint(AccumulatorError):
    """No contiguous delta path exists from a witness's state to the target."""


class UnknownCheckpoint(StaleCheckpoint):
    def __init__(self, state: int):
        self.state = state
        super().__init__(f"State {hex(state)[:18]}... is not in the retained history")


class DeltaOutOfOrder(AccumulatorError):
    """A state delta does not extend the tracked state."""


class InvalidDelta(AccumulatorError):
    def __init__(self, sequence: int):
        self.sequence = sequence
        super().__init__(f"Delta {sequence} is not a valid transition of the accumulator")


class OperationInProgress(AccumulatorError):
    def __init__(self, coin_id: int, receipt=None):
        self.coin_id = coin_id
        self.receipt = receipt
        super().__init__(f"Coin {coin_id} already has a pending transaction ({receipt})")


class LedgerRejected(AccumulatorError):
    def __init__(self, receipt, reason: str):
        self.receipt = receipt
        self.reason = reason
        super().__init__(f"Ledger rejected transaction {receipt}: {reason}")


class TimedOut(AccumulatorError):
    def __init__(self, receipt, rounds: int):
        self.receipt = receipt
        self.rounds = rounds
        super().__init__(f"No outcome for transaction {receipt} after {rounds} ledger rounds")


class ReorgInvalidatesState(AccumulatorError):
    """A reorganization discarded the state a computation was based on."""


class ConfigError(AccumulatorError):
    """Invalid client configuration."""
