import unittest
from decimal import Decimal
from unittest.mock import AsyncMock

from services.common.errors import CollaboratorFailure, InvalidArgument, SettlementExhausted
from services.common.memo_codec import encode_memo
from services.common.models import AssetMeta, BridgeCode, SettlementRequest, SettleReceipt
from services.common.retry_processor import RetryProcessor

DESTINATION = 'bchtest:qq8wqgxq0uu4y6k92pw9f7s6hxzfp9umsvtg39pzqf'
RECEIPT = SettleReceipt(
    bch_balance=Decimal('11.2332241'),
    token_balance=Decimal('3500'),
    settlement_txid='payout-1',
    destination_address=DESTINATION,
    amount=Decimal('1.1814112')
)


def _request(memo: str = '') -> SettlementRequest:
    return SettlementRequest(
        txid='tx-1',
        bch_balance=Decimal('12.41463259'),
        token_balance=Decimal('3000'),
        memo=memo
    )


class SettleWithRetryTests(unittest.IsolatedAsyncioTestCase):
    def _processor(self, settle: AsyncMock, max_attempts: int = 3) -> RetryProcessor:
        return RetryProcessor(
            settle,
            max_attempts=max_attempts,
            backoff_min_seconds=0,
            backoff_max_seconds=0
        )

    async def test_requires_request(self) -> None:
        with self.assertRaises(InvalidArgument) as ctx:
            await self._processor(AsyncMock()).settle_with_retry(None)
        self.assertIn('obj is undefined', str(ctx.exception))

    async def test_native_settlement(self) -> None:
        settle = AsyncMock(return_value=RECEIPT)

        outcome = await self._processor(settle).settle_with_retry(_request(memo='ignored'), 0, None)

        self.assertEqual(outcome.type, 'native')
        self.assertEqual(outcome.txid, 'tx-1')
        self.assertEqual(outcome.bch_balance, Decimal('11.2332241'))
        self.assertEqual(outcome.settlement_txid, 'payout-1')
        sent = settle.await_args.args[0]
        self.assertIsNone(sent.instruction)

    async def test_settlement_without_payout_is_not_an_outcome(self) -> None:
        settle = AsyncMock(return_value=SettleReceipt(Decimal('12.41463259'), Decimal('3000')))

        outcome = await self._processor(settle).settle_with_retry(_request(), 0, None)

        self.assertIsNone(outcome)
        settle.assert_awaited_once()

    async def test_bridged_settlement_scales_by_denomination(self) -> None:
        settle = AsyncMock(return_value=RECEIPT)
        memo = encode_memo(BridgeCode.SELL, DESTINATION)

        outcome = await self._processor(settle).settle_with_retry(
            _request(memo),
            250000000,
            AssetMeta('avax-token', 8)
        )

        self.assertEqual(outcome.type, 'bridged-token')
        sent = settle.await_args.args[0]
        self.assertEqual(sent.instruction.amount, Decimal('2.5'))
        self.assertEqual(sent.instruction.destination_address, DESTINATION)
        self.assertEqual(sent.raw_token_amount, 250000000)

    async def test_bridged_without_instruction_is_skipped(self) -> None:
        settle = AsyncMock(return_value=RECEIPT)

        outcome = await self._processor(settle).settle_with_retry(
            _request('bm90IGEgYnJpZGdlIG1lbW8='),
            100,
            AssetMeta('avax-token', 2)
        )

        self.assertIsNone(outcome)
        settle.assert_not_awaited()

    async def test_retries_collaborator_failures(self) -> None:
        settle = AsyncMock(side_effect=[CollaboratorFailure('bch', 'timeout'), RECEIPT])

        outcome = await self._processor(settle).settle_with_retry(_request())

        self.assertEqual(outcome.settlement_txid, 'payout-1')
        self.assertEqual(settle.await_count, 2)

    async def test_exhaustion_surfaces_last_error(self) -> None:
        settle = AsyncMock(side_effect=CollaboratorFailure('bch', 'insufficient fee'))

        with self.assertRaises(SettlementExhausted) as ctx:
            await self._processor(settle, max_attempts=3).settle_with_retry(_request())

        self.assertEqual(settle.await_count, 3)
        self.assertEqual(ctx.exception.txid, 'tx-1')
        self.assertIsInstance(ctx.exception.__cause__, CollaboratorFailure)
        self.assertIn('insufficient fee', str(ctx.exception))

    async def test_invalid_arguments_are_not_retried(self) -> None:
        settle = AsyncMock(side_effect=InvalidArgument('bchIn must be positive'))

        with self.assertRaises(InvalidArgument):
            await self._processor(settle).settle_with_retry(_request())
        self.assertEqual(settle.await_count, 1)


if __name__ == '__main__':
    unittest.main()
