from __future__ import annotations

import logging
from decimal import Decimal
from typing import Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_client import Counter, make_asgi_app
from pydantic import BaseModel, Field

from services.common.chain_clients import JsonRpcChainClient
from services.common.config import load_genesis
from services.common.errors import CollaboratorFailure
from services.common.price_curve import PriceCurveEngine
from services.common.price_feed import CoinbasePriceFeed
from services.common.state_store import StateStore, open_state_store
from services.common.state_sync import BalanceLedger

from .config import get_settings
from .quote_engine import QuoteEngineError, build_quote

settings = get_settings()
logger = logging.getLogger(__name__)

QUOTES_TOTAL = Counter(
    'token_liquidity_quotes_total',
    'Quotes served from the API',
    ['side']
)

app = FastAPI(title=settings.app_name, default_response_class=ORJSONResponse)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[x.strip() for x in settings.cors_origins.split(',') if x.strip()],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*']
)
app.mount('/metrics', make_asgi_app())

_store: StateStore | None = None
_ledger: BalanceLedger | None = None
_engine: PriceCurveEngine | None = None
_bch_client: JsonRpcChainClient | None = None
_price_feed: CoinbasePriceFeed | None = None


class BalancesResponse(BaseModel):
    bch_balance: str
    token_balance: str
    effective_token_balance: str = Field(description='Curve position implied by the BCH reserve')
    bch_original_balance: str
    token_original_balance: str
    updated_at: str | None = None


class PriceResponse(BaseModel):
    usd_per_token: str


@app.on_event('startup')
async def startup() -> None:
    global _store, _ledger, _engine, _bch_client, _price_feed
    genesis = load_genesis()
    _engine = PriceCurveEngine(genesis)
    _store = await open_state_store(settings.state_backend, path=settings.state_path, dsn=settings.postgres_dsn)
    _bch_client = JsonRpcChainClient('bch', settings.bch_rpc_url, token_id=genesis.token_id)
    _price_feed = CoinbasePriceFeed(settings.price_feed_url)
    _ledger = BalanceLedger(genesis, _engine, _bch_client, _bch_client, _price_feed, _store)


@app.on_event('shutdown')
async def shutdown() -> None:
    if _price_feed is not None:
        await _price_feed.aclose()
    if _bch_client is not None:
        await _bch_client.aclose()
    if _store is not None:
        await _store.close()


@app.get('/health')
async def health() -> dict[str, str]:
    return {'status': 'ok'}


@app.get('/balances')
async def balances() -> BalancesResponse:
    assert _store is not None and _engine is not None
    try:
        snapshot = await _store.read_state()
    except CollaboratorFailure as exc:
        raise HTTPException(status_code=503, detail=exc.detail) from exc

    return BalancesResponse(
        bch_balance=format(snapshot.bch_balance, 'f'),
        token_balance=format(snapshot.token_balance, 'f'),
        effective_token_balance=format(_engine.effective_token_balance(bch_balance=snapshot.bch_balance), 'f'),
        bch_original_balance=format(_engine.genesis.bch_original_balance, 'f'),
        token_original_balance=format(_engine.genesis.token_original_balance, 'f'),
        updated_at=snapshot.updated_at.isoformat() if snapshot.updated_at else None
    )


@app.get('/price')
async def price() -> PriceResponse:
    assert _ledger is not None
    try:
        usd_per_token = await _ledger.current_price()
    except CollaboratorFailure as exc:
        logger.warning('price unavailable source=%s detail=%s', exc.source, exc.detail)
        raise HTTPException(status_code=503, detail=exc.detail) from exc
    return PriceResponse(usd_per_token=usd_per_token)


@app.get('/quote')
async def quote(
    side: Literal['sell_token', 'sell_bch'],
    amount: Decimal = Query(..., gt=0)
) -> dict:
    assert _store is not None and _engine is not None
    try:
        snapshot = await _store.read_state()
    except CollaboratorFailure as exc:
        raise HTTPException(status_code=503, detail=exc.detail) from exc

    try:
        payload = build_quote(side=side, amount=amount, snapshot=snapshot, engine=_engine)
    except QuoteEngineError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    QUOTES_TOTAL.labels(side=side).inc()
    return payload


@app.get('/')
async def root() -> dict:
    return {
        'service': settings.app_name,
        'environment': settings.environment,
        'endpoints': ['/health', '/balances', '/price', '/quote', '/metrics']
    }
