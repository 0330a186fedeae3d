from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

import httpx

from .errors import CollaboratorFailure

LOGGER = logging.getLogger('token_liquidity.price_feed')

DEFAULT_PRICE_FEED_URL = 'https://api.coinbase.com/v2/exchange-rates?currency=BCH'


class CoinbasePriceFeed:
    def __init__(
        self,
        url: str = DEFAULT_PRICE_FEED_URL,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def usd_per_bch(self) -> Decimal:
        try:
            response = await self._client.get(self.url)
        except httpx.HTTPError as exc:
            raise CollaboratorFailure('price-feed', f'exchange rate request failed: {exc}') from exc

        if not response.is_success:
            raise CollaboratorFailure('price-feed', f'exchange rate request returned status={response.status_code}')

        try:
            rate = response.json()['data']['rates']['USD']
            usd = Decimal(str(rate))
        except (ValueError, KeyError, TypeError, InvalidOperation) as exc:
            raise CollaboratorFailure('price-feed', 'exchange rate body is malformed') from exc

        if not usd.is_finite() or usd <= 0:
            raise CollaboratorFailure('price-feed', f'exchange rate is not positive: {usd}')

        LOGGER.info('usd/bch exchange rate=%s', usd)
        return usd
