import unittest
from decimal import Decimal
from unittest.mock import AsyncMock

from services.common.errors import CollaboratorFailure
from services.common.models import (
    BridgeCode,
    BridgeInstruction,
    GenesisConfig,
    InboundTransfer,
    SettlementRequest
)
from services.common.price_curve import PriceCurveEngine
from services.common.settlement import Settler

SENDER = 'bitcoincash:qz9cq5f2n7kvlgxr3awhslzl5jcxhtvpqyhe0m6x4d'
DESTINATION = 'bchtest:qq8wqgxq0uu4y6k92pw9f7s6hxzfp9umsvtg39pzqf'


class SettlerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.engine = PriceCurveEngine(GenesisConfig(Decimal('25'), Decimal('5000')))
        self.base = AsyncMock()
        self.base.send_bch.return_value = 'payout-bch'
        self.base.send_tokens.return_value = 'payout-slp'
        self.inspector = AsyncMock()
        self.bridge = AsyncMock()
        self.bridge.burn_token.return_value = 'burn-1'
        self.settler = Settler(self.engine, self.base, self.inspector, self.bridge)

    def _request(self, instruction=None, raw: int = 0) -> SettlementRequest:
        return SettlementRequest(
            txid='tx-1',
            bch_balance=Decimal('12.41463259'),
            token_balance=Decimal('3000'),
            instruction=instruction,
            raw_token_amount=raw
        )

    async def test_native_tokens_in_pays_bch(self) -> None:
        self.inspector.get_transfer.return_value = InboundTransfer('tx-1', SENDER, tokens_in=Decimal('500'))

        receipt = await self.settler.settle(self._request())

        self.assertEqual(receipt.amount, Decimal('1.1814112'))
        self.assertEqual(receipt.settlement_txid, 'payout-bch')
        self.assertEqual(receipt.destination_address, SENDER)
        self.assertLess(receipt.bch_balance, Decimal('12.41463259'))
        self.base.send_bch.assert_awaited_once_with(SENDER, Decimal('1.1814112'))
        self.base.send_tokens.assert_not_awaited()

    async def test_native_bch_in_pays_tokens(self) -> None:
        self.inspector.get_transfer.return_value = InboundTransfer('tx-1', SENDER, bch_in=Decimal('1.30565831'))

        receipt = await self.settler.settle(self._request())

        self.assertEqual(int(receipt.amount), 499)
        self.assertEqual(receipt.settlement_txid, 'payout-slp')
        self.assertGreater(receipt.bch_balance, Decimal('12.41463259'))
        self.base.send_tokens.assert_awaited_once()
        self.base.send_bch.assert_not_awaited()

    async def test_native_without_value_changes_nothing(self) -> None:
        self.inspector.get_transfer.return_value = InboundTransfer('tx-1', SENDER)

        receipt = await self.settler.settle(self._request())

        self.assertEqual(receipt.bch_balance, Decimal('12.41463259'))
        self.assertEqual(receipt.token_balance, Decimal('3000'))
        self.assertIsNone(receipt.settlement_txid)
        self.base.send_bch.assert_not_awaited()
        self.base.send_tokens.assert_not_awaited()

    async def test_native_sent_by_the_pool_is_ignored(self) -> None:
        settler = Settler(self.engine, self.base, self.inspector, self.bridge, own_addresses=[SENDER.upper()])
        self.inspector.get_transfer.return_value = InboundTransfer('tx-1', SENDER, bch_in=Decimal('0.5'))

        receipt = await settler.settle(self._request())

        self.assertEqual(receipt.bch_balance, Decimal('12.41463259'))
        self.assertEqual(receipt.token_balance, Decimal('3000'))
        self.assertIsNone(receipt.settlement_txid)
        self.base.send_bch.assert_not_awaited()
        self.base.send_tokens.assert_not_awaited()

    async def test_bridged_sell_burns_then_pays_bch(self) -> None:
        instruction = BridgeInstruction(True, BridgeCode.SELL, DESTINATION, Decimal('500'))

        receipt = await self.settler.settle(self._request(instruction, raw=50000))

        self.bridge.burn_token.assert_awaited_once_with(50000)
        self.base.send_bch.assert_awaited_once_with(DESTINATION, Decimal('1.1814112'))
        self.assertEqual(receipt.destination_address, DESTINATION)
        self.inspector.get_transfer.assert_not_awaited()

    async def test_bridged_redeem_sends_tokens_one_to_one(self) -> None:
        instruction = BridgeInstruction(True, BridgeCode.REDEEM, DESTINATION, Decimal('12.5'))

        receipt = await self.settler.settle(self._request(instruction, raw=1250))

        self.base.send_tokens.assert_awaited_once_with(DESTINATION, Decimal('12.5'))
        self.assertEqual(receipt.bch_balance, Decimal('12.41463259'))
        self.assertEqual(receipt.token_balance, Decimal('3000'))
        self.assertEqual(receipt.amount, Decimal('12.5'))

    async def test_retry_does_not_repeat_completed_burn(self) -> None:
        instruction = BridgeInstruction(True, BridgeCode.SELL, DESTINATION, Decimal('500'))
        self.base.send_bch.side_effect = [CollaboratorFailure('bch', 'mempool full'), 'payout-bch']

        with self.assertRaises(CollaboratorFailure):
            await self.settler.settle(self._request(instruction, raw=50000))
        receipt = await self.settler.settle(self._request(instruction, raw=50000))

        self.assertEqual(receipt.settlement_txid, 'payout-bch')
        self.assertEqual(self.bridge.burn_token.await_count, 1)
        self.assertEqual(self.base.send_bch.await_count, 2)

    async def test_completed_payout_is_not_sent_twice(self) -> None:
        self.inspector.get_transfer.return_value = InboundTransfer('tx-1', SENDER, tokens_in=Decimal('500'))

        first = await self.settler.settle(self._request())
        second = await self.settler.settle(self._request())

        self.assertEqual(first, second)
        self.base.send_bch.assert_awaited_once()


if __name__ == '__main__':
    unittest.main()
