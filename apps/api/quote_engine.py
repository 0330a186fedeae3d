from __future__ import annotations

from decimal import Decimal

from services.common.errors import InvalidArgument
from services.common.models import StateSnapshot
from services.common.price_curve import PriceCurveEngine

SIDES = ('sell_token', 'sell_bch')


class QuoteEngineError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _fmt(value: Decimal) -> str:
    return format(value, 'f')


def build_quote(side: str, amount: Decimal, snapshot: StateSnapshot, engine: PriceCurveEngine) -> dict:
    """
    Price a trade against the last checkpointed reserves without settling it.

    ``sell_token`` quotes BCH out for ``amount`` tokens in; ``sell_bch`` quotes
    tokens out for ``amount`` BCH in.
    """
    if side not in SIDES:
        raise QuoteEngineError(400, f'unsupported side={side}; expected one of {",".join(SIDES)}')
    if amount <= 0:
        raise QuoteEngineError(400, 'amount must be greater than zero')

    try:
        if side == 'sell_token':
            result = engine.sell_token(token_in=amount, bch_balance=snapshot.bch_balance)
        else:
            result = engine.sell_bch(bch_in=amount, bch_balance=snapshot.bch_balance)
        spot_before = engine.spot_price(bch_balance=snapshot.bch_balance, usd_per_bch=snapshot.usd_per_bch)
        spot_after = engine.spot_price(bch_balance=result.new_bch_balance, usd_per_bch=snapshot.usd_per_bch)
    except InvalidArgument as exc:
        raise QuoteEngineError(422, str(exc)) from exc

    return {
        'side': side,
        'amount_in': _fmt(amount),
        'amount_out': _fmt(result.amount_out),
        'asset_in': 'token' if side == 'sell_token' else 'bch',
        'asset_out': 'bch' if side == 'sell_token' else 'token',
        'bch_balance': _fmt(snapshot.bch_balance),
        'new_bch_balance': _fmt(result.new_bch_balance),
        'new_token_balance': _fmt(result.new_token_balance),
        'usd_per_bch': _fmt(snapshot.usd_per_bch),
        'spot_price_before': _fmt(spot_before),
        'spot_price_after': _fmt(spot_after),
        'state_updated_at': snapshot.updated_at.isoformat() if snapshot.updated_at else None
    }
