from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from decimal import Decimal

from .chain_clients import BaseSettlementClient, BridgeSettlementClient, TransferInspector
from .errors import InvalidArgument
from .models import BridgeCode, SettlementRequest, SettleReceipt
from .price_curve import PriceCurveEngine

LOGGER = logging.getLogger('token_liquidity.settlement')


class SettlementJournal:
    """Broadcast steps already completed, keyed by inbound txid and step name."""

    def __init__(self) -> None:
        self._steps: dict[str, dict[str, str]] = {}

    def get(self, txid: str, step: str) -> str | None:
        return self._steps.get(txid, {}).get(step)

    def record(self, txid: str, step: str, settlement_txid: str) -> None:
        self._steps.setdefault(txid, {})[step] = settlement_txid

    def forget(self, txid: str) -> None:
        self._steps.pop(txid, None)

    def __contains__(self, txid: str) -> bool:
        return txid in self._steps


class Settler:
    def __init__(
        self,
        engine: PriceCurveEngine,
        base_client: BaseSettlementClient,
        inspector: TransferInspector,
        bridge_client: BridgeSettlementClient | None = None,
        journal: SettlementJournal | None = None,
        own_addresses: Iterable[str] = ()
    ) -> None:
        self.engine = engine
        self.base_client = base_client
        self.inspector = inspector
        self.bridge_client = bridge_client
        self.journal = journal or SettlementJournal()
        self.own_addresses = frozenset(a.lower() for a in own_addresses)

    async def _step(self, txid: str, step: str, broadcast: Callable[[], Awaitable[str]]) -> str:
        done = self.journal.get(txid, step)
        if done is not None:
            LOGGER.info('skipping completed step txid=%s step=%s settlement_txid=%s', txid, step, done)
            return done
        settlement_txid = await broadcast()
        self.journal.record(txid, step, settlement_txid)
        return settlement_txid

    async def settle(self, request: SettlementRequest) -> SettleReceipt:
        if request.instruction is None:
            return await self._settle_native(request)
        return await self._settle_bridged(request)

    async def _settle_native(self, request: SettlementRequest) -> SettleReceipt:
        transfer = await self.inspector.get_transfer(request.txid)
        unchanged = SettleReceipt(bch_balance=request.bch_balance, token_balance=request.token_balance)

        if transfer.sender.lower() in self.own_addresses:
            # Payouts and change sent by the pool land in its own history.
            LOGGER.info('ignoring transaction sent by the pool txid=%s sender=%s', request.txid, transfer.sender)
            return unchanged

        if transfer.tokens_in > 0:
            result = self.engine.sell_token(token_in=transfer.tokens_in, bch_balance=request.bch_balance)
            payout = await self._step(
                request.txid,
                'send-bch',
                lambda: self.base_client.send_bch(transfer.sender, result.amount_out)
            )
        elif transfer.bch_in > 0:
            result = self.engine.sell_bch(bch_in=transfer.bch_in, bch_balance=request.bch_balance)
            payout = await self._step(
                request.txid,
                'send-tokens',
                lambda: self.base_client.send_tokens(transfer.sender, result.amount_out)
            )
        else:
            LOGGER.info('no value received txid=%s sender=%s', request.txid, transfer.sender)
            return unchanged

        return SettleReceipt(
            bch_balance=result.new_bch_balance,
            token_balance=result.new_token_balance,
            settlement_txid=payout,
            destination_address=transfer.sender,
            amount=result.amount_out
        )

    async def _settle_bridged(self, request: SettlementRequest) -> SettleReceipt:
        instruction = request.instruction
        if self.bridge_client is None:
            raise InvalidArgument('bridged settlement requires a bridge client')
        if instruction.amount is None or instruction.amount <= 0:
            raise InvalidArgument(f'bridged amount must be positive txid={request.txid}')

        await self._step(request.txid, 'burn', lambda: self.bridge_client.burn_token(request.raw_token_amount))

        destination = instruction.destination_address
        amount: Decimal = instruction.amount

        if instruction.code == BridgeCode.SELL:
            result = self.engine.sell_token(token_in=amount, bch_balance=request.bch_balance)
            payout = await self._step(
                request.txid,
                'send-bch',
                lambda: self.base_client.send_bch(destination, result.amount_out)
            )
            return SettleReceipt(
                bch_balance=result.new_bch_balance,
                token_balance=result.new_token_balance,
                settlement_txid=payout,
                destination_address=destination,
                amount=result.amount_out
            )

        # REDEEM moves tokens across the bridge 1:1 and leaves the curve alone.
        payout = await self._step(
            request.txid,
            'send-tokens',
            lambda: self.base_client.send_tokens(destination, amount)
        )
        return SettleReceipt(
            bch_balance=request.bch_balance,
            token_balance=request.token_balance,
            settlement_txid=payout,
            destination_address=destination,
            amount=amount
        )
