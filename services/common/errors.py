from __future__ import annotations


class InvalidArgument(ValueError):
    """A required input to a computation is missing or malformed. Never retried."""


class CollaboratorFailure(Exception):
    """A chain, price-feed or state-store call failed."""

    def __init__(self, source: str, detail: str) -> None:
        super().__init__(detail)
        self.source = source
        self.detail = detail


class SettlementExhausted(Exception):
    def __init__(self, txid: str, attempts: int, detail: str) -> None:
        super().__init__(f'settlement of txid={txid} failed after {attempts} attempts: {detail}')
        self.txid = txid
        self.attempts = attempts
