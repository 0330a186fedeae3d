"""
Bonding-curve pricing for the BCH/token pool.

The curve is anchored at the genesis reserves (B0 BCH, T0 tokens) and maps the
pool's BCH reserve ``b`` to a notional token position ``t``:

    t(b) = -T0 * ln(b / B0)      for b <= B0
    t(b) =  T0 * (1 - b / B0)    for b >  B0

Below genesis the curve is exponential. Above genesis tokens trade at the fixed
genesis ratio B0/T0, which is where ``t`` goes negative. Both branches meet
with equal slope at b = B0.

Every returned quantity is quantized to 8 decimal places, rounding away from
zero, so settlement amounts are identical on every host.
"""

from __future__ import annotations

import logging
from decimal import ROUND_UP, Decimal, InvalidOperation, localcontext

from .errors import InvalidArgument
from .models import ExchangeResult, GenesisConfig

LOGGER = logging.getLogger('token_liquidity.price_curve')

# 270 satoshi network fee carried by every BCH leg.
TX_FEE = Decimal('0.0000027')
PLACES = Decimal('0.00000001')
_PRECISION = 34


def _dec(value, name: str) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidArgument(f'{name} must be a number: {value!r}') from exc
    if not parsed.is_finite():
        raise InvalidArgument(f'{name} must be finite: {value!r}')
    return parsed


def round8(value: Decimal) -> Decimal:
    return value.quantize(PLACES, rounding=ROUND_UP)


def _token_position(bch: Decimal, bch_original: Decimal, token_original: Decimal) -> Decimal:
    if bch <= bch_original:
        return -token_original * (bch / bch_original).ln()
    return token_original * (1 - bch / bch_original)


def _bch_position(token: Decimal, bch_original: Decimal, token_original: Decimal) -> Decimal:
    if token >= 0:
        return bch_original * (-token / token_original).exp()
    return bch_original * (token_original - token) / token_original


class PriceCurveEngine:
    def __init__(self, genesis: GenesisConfig) -> None:
        self.genesis = genesis

    def _anchors(self, bch_original_balance, token_original_balance) -> tuple[Decimal, Decimal]:
        bch_original = (
            self.genesis.bch_original_balance
            if bch_original_balance is None
            else _dec(bch_original_balance, 'bchOriginalBalance')
        )
        token_original = (
            self.genesis.token_original_balance
            if token_original_balance is None
            else _dec(token_original_balance, 'tokenOriginalBalance')
        )
        if bch_original <= 0 or token_original <= 0:
            raise InvalidArgument('original balances must be positive')
        return bch_original, token_original

    def sell_token(
        self,
        token_in=None,
        bch_balance=None,
        bch_original_balance=None,
        token_original_balance=None
    ) -> ExchangeResult:
        """Tokens in, BCH out. ``amount_out`` is the BCH paid to the seller."""
        if bch_balance is None:
            raise InvalidArgument('bchBalance must be defined')
        if token_in is None:
            raise InvalidArgument('tokenIn must be defined')

        bch = _dec(bch_balance, 'bchBalance')
        tokens = _dec(token_in, 'tokenIn')
        if bch <= 0:
            raise InvalidArgument(f'bchBalance must be positive: {bch}')
        if tokens <= 0:
            raise InvalidArgument(f'tokenIn must be positive: {tokens}')
        bch_original, token_original = self._anchors(bch_original_balance, token_original_balance)

        with localcontext() as ctx:
            ctx.prec = _PRECISION
            token1 = _token_position(bch, bch_original, token_original)
            token2 = token1 + tokens
            bch2 = _bch_position(token2, bch_original, token_original)
            bch_out = bch - bch2 + TX_FEE

            result = ExchangeResult(
                amount_out=round8(bch_out),
                new_bch_balance=round8(bch2),
                new_token_balance=round8(token2)
            )

        LOGGER.debug('sell_token token_in=%s bch_balance=%s result=%s', tokens, bch, result)
        return result

    def sell_bch(
        self,
        bch_in=None,
        bch_balance=None,
        bch_original_balance=None,
        token_original_balance=None
    ) -> ExchangeResult:
        """BCH in, tokens out. ``amount_out`` is the number of tokens paid to the buyer."""
        if bch_balance is None:
            raise InvalidArgument('bchBalance must be defined')
        if bch_in is None:
            raise InvalidArgument('bchIn must be defined')

        bch = _dec(bch_balance, 'bchBalance')
        bch_added = _dec(bch_in, 'bchIn')
        if bch <= 0:
            raise InvalidArgument(f'bchBalance must be positive: {bch}')
        if bch_added <= 0:
            raise InvalidArgument(f'bchIn must be positive: {bch_added}')
        bch_original, token_original = self._anchors(bch_original_balance, token_original_balance)

        with localcontext() as ctx:
            ctx.prec = _PRECISION
            bch2 = bch + bch_added - TX_FEE
            if bch2 <= 0:
                raise InvalidArgument(f'bchIn={bch_added} does not cover the network fee')
            token1 = _token_position(bch, bch_original, token_original)
            token2 = _token_position(bch2, bch_original, token_original)

            result = ExchangeResult(
                amount_out=round8(abs(token1 - token2)),
                new_bch_balance=round8(bch2),
                new_token_balance=round8(token2)
            )

        LOGGER.debug('sell_bch bch_in=%s bch_balance=%s result=%s', bch_added, bch, result)
        return result

    def spot_price(self, bch_balance=None, usd_per_bch=None) -> Decimal:
        """USD price of one token at the current BCH reserve."""
        if bch_balance is None:
            raise InvalidArgument('bchBalance is required')
        if usd_per_bch is None:
            raise InvalidArgument('usdPerBCH is required')

        bch = _dec(bch_balance, 'bchBalance')
        usd = _dec(usd_per_bch, 'usdPerBCH')
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return round8(usd * bch / self.genesis.token_original_balance)

    def effective_token_balance(self, bch_balance=None) -> Decimal:
        if bch_balance is None:
            raise InvalidArgument('bchBalance is required')

        bch = _dec(bch_balance, 'bchBalance')
        if bch <= 0:
            raise InvalidArgument(f'bchBalance must be positive: {bch}')
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return round8(
                _token_position(bch, self.genesis.bch_original_balance, self.genesis.token_original_balance)
            )
