"""
Narrow interfaces onto the two chains, plus a JSON-RPC adapter for a chain gateway.

Signing, UTXO selection and raw node access live behind the gateway; the
reconciler only sees the methods declared here.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from .errors import CollaboratorFailure
from .models import AddressBalance, AssetMeta, ChainTx, InboundTransfer, TxIO

LOGGER = logging.getLogger('token_liquidity.chain_clients')


class BalanceClient(Protocol):
    async def get_balance(self, address: str) -> AddressBalance:
        """Confirmed balance plus the address history as txids, newest first."""
        ...


class TokenBalanceClient(Protocol):
    async def get_token_balance(self, address: str) -> Decimal: ...


class HistoryClient(Protocol):
    async def get_transactions(self, address: str) -> list[ChainTx]:
        """Transactions touching the address, newest first."""
        ...


class ConfirmationClient(Protocol):
    async def get_confirmations(self, txids: list[str]) -> dict[str, int]: ...


class TransferInspector(Protocol):
    async def get_transfer(self, txid: str) -> InboundTransfer: ...


class BaseSettlementClient(Protocol):
    async def send_bch(self, address: str, amount: Decimal) -> str: ...

    async def send_tokens(self, address: str, amount: Decimal) -> str: ...


class BridgeSettlementClient(Protocol):
    async def burn_token(self, amount: int) -> str: ...


def _decimal(value: Any, field: str, chain: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        raise CollaboratorFailure(chain, f'invalid decimal field {field}: {value!r}') from exc


def _parse_io(items: Any) -> tuple[TxIO, ...]:
    if not isinstance(items, list):
        return ()
    parsed: list[TxIO] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        parsed.append(
            TxIO(
                address=str(item.get('address', '')),
                asset_id=str(item.get('assetID', item.get('asset_id', ''))),
                amount=int(item.get('amount', 0))
            )
        )
    return tuple(parsed)


def parse_chain_tx(item: dict) -> ChainTx:
    return ChainTx(
        id=str(item.get('id', '')),
        memo=str(item.get('memo') or ''),
        inputs=_parse_io(item.get('inputs')),
        outputs=_parse_io(item.get('outputs'))
    )


class JsonRpcChainClient:
    """
    JSON-RPC client for a chain gateway.

    Usage:
        bch = JsonRpcChainClient('bch', 'http://gateway:7000/bch', token_id=TOKEN_ID)
        info = await bch.get_balance(BCH_ADDR)
    """

    def __init__(
        self,
        chain: str,
        url: str,
        *,
        token_id: str = '',
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None
    ) -> None:
        self.chain = chain
        self.url = url
        self.token_id = token_id
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._id = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list | None = None) -> Any:
        self._id += 1
        payload = {
            'jsonrpc': '2.0',
            'id': self._id,
            'method': method,
            'params': params or []
        }

        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise CollaboratorFailure(self.chain, f'{method} connection failed: {exc}') from exc

        if not response.is_success:
            raise CollaboratorFailure(self.chain, f'{method} returned status={response.status_code}')

        try:
            body = response.json()
        except ValueError as exc:
            raise CollaboratorFailure(self.chain, f'{method} returned a non-JSON body') from exc

        if not isinstance(body, dict):
            raise CollaboratorFailure(self.chain, f'{method} returned a malformed body')
        error = body.get('error')
        if error:
            message = error.get('message', error) if isinstance(error, dict) else error
            raise CollaboratorFailure(self.chain, f'{method} rpc error: {message}')
        return body.get('result')

    async def get_balance(self, address: str) -> AddressBalance:
        result = await self._call('getbalance', [address])
        if not isinstance(result, dict):
            raise CollaboratorFailure(self.chain, f'getbalance returned no data for {address}')
        txids = result.get('txids', [])
        return AddressBalance(
            balance=_decimal(result.get('balance'), 'balance', self.chain),
            txids=[str(x) for x in txids] if isinstance(txids, list) else []
        )

    async def get_token_balance(self, address: str) -> Decimal:
        result = await self._call('gettokenbalance', [address, self.token_id])
        return _decimal(result, 'token_balance', self.chain)

    async def get_transactions(self, address: str) -> list[ChainTx]:
        result = await self._call('gettransactions', [address])
        if not isinstance(result, list):
            raise CollaboratorFailure(self.chain, f'no transaction history for {address}')
        return [parse_chain_tx(item) for item in result if isinstance(item, dict)]

    async def get_confirmations(self, txids: list[str]) -> dict[str, int]:
        result = await self._call('getconfirmations', [txids])
        if not isinstance(result, dict):
            return {}
        return {str(k): int(v) for k, v in result.items()}

    async def get_transfer(self, txid: str) -> InboundTransfer:
        result = await self._call('gettransfer', [txid, self.token_id])
        if not isinstance(result, dict) or not result.get('sender'):
            raise CollaboratorFailure(self.chain, f'gettransfer returned no sender for txid={txid}')
        return InboundTransfer(
            txid=txid,
            sender=str(result['sender']),
            bch_in=_decimal(result.get('bch_in', '0'), 'bch_in', self.chain),
            tokens_in=_decimal(result.get('tokens_in', '0'), 'tokens_in', self.chain)
        )

    async def get_asset_description(self, asset_id: str | None = None) -> AssetMeta:
        asset = asset_id or self.token_id
        result = await self._call('getassetdescription', [asset])
        if not isinstance(result, dict):
            raise CollaboratorFailure(self.chain, f'no description for asset={asset}')
        return AssetMeta(
            asset_id=asset,
            denomination=int(result.get('denomination', 0)),
            symbol=str(result.get('symbol', ''))
        )

    async def send_bch(self, address: str, amount: Decimal) -> str:
        txid = await self._call('send', [address, format(amount, 'f')])
        LOGGER.info('sent bch chain=%s address=%s amount=%s txid=%s', self.chain, address, amount, txid)
        return str(txid)

    async def send_tokens(self, address: str, amount: Decimal) -> str:
        txid = await self._call('sendtokens', [address, format(amount, 'f'), self.token_id])
        LOGGER.info('sent tokens chain=%s address=%s amount=%s txid=%s', self.chain, address, amount, txid)
        return str(txid)

    async def burn_token(self, amount: int) -> str:
        txid = await self._call('burntoken', [int(amount), self.token_id])
        LOGGER.info('burned tokens chain=%s amount=%s txid=%s', self.chain, amount, txid)
        return str(txid)
