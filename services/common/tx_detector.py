from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

from .models import ChainTx, TxRecord

LOGGER = logging.getLogger('token_liquidity.tx_detector')

HistoryFetcher = Callable[[], Awaitable[Sequence[Any]]]
ConfirmationFetcher = Callable[[list[str]], Awaitable[dict[str, int]]]


def _txid_of(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return str(item.get('txid') or item.get('id') or '')
    return str(getattr(item, 'txid', None) or getattr(item, 'id', ''))


def filter_new_by_chain(seen_ids: Iterable[str], raw_history: Sequence[Any]) -> list[Any]:
    """Entries of ``raw_history`` whose id is not in ``seen_ids``, in history order."""
    seen = set(seen_ids)
    fresh: list[Any] = []
    for item in raw_history:
        txid = _txid_of(item)
        if not txid or txid in seen:
            continue
        # Pages can repeat an id; only the first occurrence is kept.
        seen.add(txid)
        fresh.append(item)
    return fresh


def oldest_first(raw_history: Sequence[Any]) -> list[Any]:
    """Chain gateways page history newest first; settlement runs in arrival order."""
    return list(reversed(raw_history))


class TxDetector:
    def __init__(self, chain: str) -> None:
        self.chain = chain

    async def detect_new(
        self,
        seen_txids: Iterable[str],
        fetch_history: HistoryFetcher,
        fetch_confirmations: ConfirmationFetcher | None = None
    ) -> list[TxRecord]:
        history = await fetch_history()
        fresh = [_txid_of(item) for item in filter_new_by_chain(seen_txids, oldest_first(history))]
        if not fresh:
            return []

        confirmations: dict[str, int] = {}
        if fetch_confirmations is not None:
            confirmations = await fetch_confirmations(fresh)

        LOGGER.info('new transactions chain=%s count=%s', self.chain, len(fresh))
        return [TxRecord(txid=txid, confirmations=confirmations.get(txid)) for txid in fresh]

    async def detect_new_bridged(self, seen_txids: Iterable[str], fetch_history: HistoryFetcher) -> list[ChainTx]:
        history = await fetch_history()
        fresh = filter_new_by_chain(seen_txids, oldest_first(history))
        if fresh:
            LOGGER.info('new transactions chain=%s count=%s', self.chain, len(fresh))
        return fresh
