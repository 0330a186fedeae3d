from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from .chain_clients import BalanceClient, TokenBalanceClient
from .errors import CollaboratorFailure
from .models import BalanceSnapshot, GenesisConfig, PoolState, StateSnapshot
from .price_curve import PriceCurveEngine
from .state_store import StateStore

LOGGER = logging.getLogger('token_liquidity.state_sync')


class PriceFeed(Protocol):
    async def usd_per_bch(self) -> Decimal: ...


@dataclass(frozen=True)
class LastTransactionReport:
    last_transaction: str | None
    changed: bool
    bch_balance: Decimal | None = None
    token_balance: Decimal | None = None


class BalanceLedger:
    def __init__(
        self,
        genesis: GenesisConfig,
        engine: PriceCurveEngine,
        bch_client: BalanceClient,
        token_client: TokenBalanceClient,
        price_feed: PriceFeed,
        store: StateStore
    ) -> None:
        self.genesis = genesis
        self.engine = engine
        self.bch_client = bch_client
        self.token_client = token_client
        self.price_feed = price_feed
        self.store = store

    async def blockchain_balances(self, bch_addr: str | None = None) -> BalanceSnapshot:
        """Live reserves read from the chain. Collaborator errors propagate unchanged."""
        address_info = await self.bch_client.get_balance(bch_addr or self.genesis.bch_addr)
        token_balance = await self.token_client.get_token_balance(self.genesis.slp_addr)
        LOGGER.info('chain balances bch=%s tokens=%s', address_info.balance, token_balance)
        return BalanceSnapshot(bch_balance=address_info.balance, token_balance=token_balance)

    async def current_price(self) -> str:
        """
        Token spot price in USD as a string.

        Prices from the live feed and the live BCH reserve, persisting the rate and
        reserve. The saved token balance is the pool's own bookkeeping and is kept
        as is. When a live read fails the last persisted snapshot answers instead;
        if that also fails, the store's error propagates.
        """
        try:
            usd_per_bch = await self.price_feed.usd_per_bch()
            address_info = await self.bch_client.get_balance(self.genesis.bch_addr)
            token_balance = await self._kept_token_balance()
        except CollaboratorFailure as exc:
            LOGGER.warning('live price unavailable, using saved state source=%s detail=%s', exc.source, exc.detail)
            return await self._saved_price()

        spot = self.engine.spot_price(bch_balance=address_info.balance, usd_per_bch=usd_per_bch)
        await self.store.save_state(
            StateSnapshot(
                usd_per_bch=usd_per_bch,
                bch_balance=address_info.balance,
                token_balance=token_balance,
                spot_price=spot,
                updated_at=datetime.now(timezone.utc)
            )
        )
        return format(spot, 'f')

    async def _kept_token_balance(self) -> Decimal:
        try:
            return (await self.store.read_state()).token_balance
        except CollaboratorFailure:
            # Nothing saved yet; start from custody, as the reconciler does.
            return await self.token_client.get_token_balance(self.genesis.slp_addr)

    async def _saved_price(self) -> str:
        snapshot = await self.store.read_state()
        if snapshot.spot_price is not None:
            return format(snapshot.spot_price, 'f')
        spot = self.engine.spot_price(bch_balance=snapshot.bch_balance, usd_per_bch=snapshot.usd_per_bch)
        return format(spot, 'f')

    async def checkpoint(self, state: PoolState) -> StateSnapshot:
        usd_per_bch = state.usd_per_bch
        if usd_per_bch is None:
            usd_per_bch = (await self.store.read_state()).usd_per_bch
        snapshot = StateSnapshot(
            usd_per_bch=usd_per_bch,
            bch_balance=state.bch_balance,
            token_balance=state.token_balance,
            spot_price=self.engine.spot_price(bch_balance=state.bch_balance, usd_per_bch=usd_per_bch),
            updated_at=datetime.now(timezone.utc)
        )
        await self.store.save_state(snapshot)
        return snapshot

    async def compare_last_transaction(
        self,
        bch_addr: str,
        last_txid: str | None,
        bch_balance: Decimal,
        token_balance: Decimal
    ) -> LastTransactionReport:
        """
        Single-cursor change check kept for tooling that tracks only the newest txid.

        The reconciler detects work through per-chain seen sets instead.
        """
        address_info = await self.bch_client.get_balance(bch_addr)
        newest = address_info.txids[0] if address_info.txids else None
        if newest is None or newest == last_txid:
            return LastTransactionReport(
                last_transaction=last_txid,
                changed=False,
                bch_balance=bch_balance,
                token_balance=token_balance
            )

        token_now = await self.token_client.get_token_balance(self.genesis.slp_addr)
        LOGGER.info('last transaction changed previous=%s newest=%s', last_txid, newest)
        return LastTransactionReport(
            last_transaction=newest,
            changed=True,
            bch_balance=address_info.balance,
            token_balance=token_now
        )
