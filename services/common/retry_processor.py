from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from decimal import Decimal

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

from .errors import CollaboratorFailure, InvalidArgument, SettlementExhausted
from .memo_codec import decode_memo
from .models import BRIDGED_TOKEN, NATIVE, AssetMeta, SettlementOutcome, SettlementRequest, SettleReceipt

LOGGER = logging.getLogger('token_liquidity.retry_processor')

SettleFn = Callable[[SettlementRequest], Awaitable[SettleReceipt]]


def bridged_amount(raw_amount: int, asset_meta: AssetMeta) -> Decimal:
    return Decimal(int(raw_amount)) / (Decimal(10) ** int(asset_meta.denomination))


class RetryProcessor:
    def __init__(
        self,
        settle: SettleFn,
        *,
        max_attempts: int = 5,
        backoff_min_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        own_addresses: Iterable[str] = ()
    ) -> None:
        if max_attempts < 1:
            raise InvalidArgument('max_attempts must be at least 1')
        self.settle = settle
        self.max_attempts = max_attempts
        self.backoff_min_seconds = backoff_min_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.own_addresses = frozenset(own_addresses)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_min_seconds,
                min=self.backoff_min_seconds,
                max=self.backoff_max_seconds
            ),
            retry=retry_if_exception_type(CollaboratorFailure),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING)
        )

    async def _settle_with_backoff(self, request: SettlementRequest) -> SettleReceipt:
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self.settle(request)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise SettlementExhausted(request.txid, exc.last_attempt.attempt_number, str(last)) from last

    async def settle_with_retry(
        self,
        request: SettlementRequest | None,
        is_token_tx: int = 0,
        asset_meta: AssetMeta | None = None
    ) -> SettlementOutcome | None:
        """
        Settle one inbound transaction, retrying transient collaborator failures.

        ``is_token_tx`` is the raw bridged-token quantity received; zero means a
        native base-chain transaction. Returns None when a bridged transaction
        carries no valid instruction, which is ordinary traffic to the bridge
        address, and when the settlement paid nothing out (a transfer sent by
        the pool itself, or one that moved no value). Neither changes the pool.
        """
        if request is None:
            raise InvalidArgument('settlement obj is undefined')

        if is_token_tx:
            if asset_meta is None:
                raise InvalidArgument(f'asset metadata is required for bridged txid={request.txid}')
            instruction = decode_memo(request.memo, self.own_addresses)
            if not instruction.is_valid:
                LOGGER.info('skipping bridged transaction without instruction txid=%s', request.txid)
                return None
            instruction = replace(instruction, amount=bridged_amount(is_token_tx, asset_meta))
            request = replace(request, instruction=instruction, raw_token_amount=int(is_token_tx))
            settlement_type = BRIDGED_TOKEN
        else:
            request = replace(request, instruction=None, raw_token_amount=0)
            settlement_type = NATIVE

        receipt = await self._settle_with_backoff(request)
        if receipt.settlement_txid is None:
            LOGGER.info('nothing paid out txid=%s type=%s', request.txid, settlement_type)
            return None

        outcome = SettlementOutcome(
            txid=request.txid,
            bch_balance=receipt.bch_balance,
            token_balance=receipt.token_balance,
            type=settlement_type,
            amount=receipt.amount,
            destination_address=receipt.destination_address,
            settlement_txid=receipt.settlement_txid
        )
        LOGGER.info(
            'settled txid=%s type=%s amount=%s bch_balance=%s token_balance=%s',
            outcome.txid,
            outcome.type,
            outcome.amount,
            outcome.bch_balance,
            outcome.token_balance
        )
        return outcome
