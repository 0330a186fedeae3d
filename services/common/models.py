from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum

from .errors import InvalidArgument

NATIVE = 'native'
BRIDGED_TOKEN = 'bridged-token'


@dataclass(frozen=True)
class GenesisConfig:
    bch_original_balance: Decimal
    token_original_balance: Decimal
    bch_addr: str = ''
    slp_addr: str = ''
    avax_addr: str = ''
    token_id: str = ''
    avax_token_id: str = ''

    def __post_init__(self) -> None:
        bch_original = Decimal(str(self.bch_original_balance))
        token_original = Decimal(str(self.token_original_balance))
        # Curve anchors; a zero anchor makes ln(b/B0) and t/T0 undefined.
        if bch_original <= 0:
            raise InvalidArgument('bch_original_balance must be positive')
        if token_original <= 0:
            raise InvalidArgument('token_original_balance must be positive')
        object.__setattr__(self, 'bch_original_balance', bch_original)
        object.__setattr__(self, 'token_original_balance', token_original)

    @property
    def own_addresses(self) -> frozenset[str]:
        return frozenset(a for a in (self.bch_addr, self.slp_addr, self.avax_addr) if a)


@dataclass
class PoolState:
    """Live notional reserves of the pool.

    ``token_balance`` is bookkeeping for curve continuity and goes negative once
    the BCH reserve grows past its genesis value. It is not a custody balance:
    the pool never holds the full token supply.
    """

    genesis: GenesisConfig
    bch_balance: Decimal
    token_balance: Decimal
    usd_per_bch: Decimal | None = None

    @property
    def bch_original_balance(self) -> Decimal:
        return self.genesis.bch_original_balance

    @property
    def token_original_balance(self) -> Decimal:
        return self.genesis.token_original_balance


@dataclass(frozen=True)
class ExchangeResult:
    amount_out: Decimal
    new_bch_balance: Decimal
    new_token_balance: Decimal


@dataclass(frozen=True)
class TxRecord:
    txid: str
    confirmations: int | None = None


@dataclass(frozen=True)
class TxIO:
    address: str
    asset_id: str
    amount: int


@dataclass(frozen=True)
class ChainTx:
    id: str
    memo: str = ''
    inputs: tuple[TxIO, ...] = ()
    outputs: tuple[TxIO, ...] = ()

    def received(self, address: str, asset_id: str) -> int:
        return sum(o.amount for o in self.outputs if o.address == address and o.asset_id == asset_id)


class BridgeCode(IntEnum):
    SELL = 1
    REDEEM = 2


@dataclass(frozen=True)
class BridgeInstruction:
    is_valid: bool
    code: BridgeCode | None = None
    destination_address: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class AssetMeta:
    asset_id: str
    denomination: int
    symbol: str = ''


@dataclass(frozen=True)
class SettlementRequest:
    txid: str
    bch_balance: Decimal
    token_balance: Decimal
    memo: str = ''
    instruction: BridgeInstruction | None = None
    raw_token_amount: int = 0


@dataclass(frozen=True)
class SettleReceipt:
    """What the inner settlement call did for one inbound transaction."""

    bch_balance: Decimal
    token_balance: Decimal
    settlement_txid: str | None = None
    destination_address: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class SettlementOutcome:
    txid: str
    bch_balance: Decimal
    token_balance: Decimal
    type: str
    amount: Decimal | None = None
    destination_address: str | None = None
    settlement_txid: str | None = None

    def as_payload(self) -> dict:
        return {
            'txid': self.txid,
            'bchBalance': format(self.bch_balance, 'f'),
            'tokenBalance': format(self.token_balance, 'f'),
            'type': self.type,
            'amount': format(self.amount, 'f') if self.amount is not None else None,
            'destinationAddress': self.destination_address,
            'settlementTxid': self.settlement_txid
        }


@dataclass(frozen=True)
class BalanceSnapshot:
    bch_balance: Decimal
    token_balance: Decimal


@dataclass(frozen=True)
class StateSnapshot:
    usd_per_bch: Decimal
    bch_balance: Decimal
    token_balance: Decimal
    spot_price: Decimal | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AddressBalance:
    balance: Decimal
    txids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InboundTransfer:
    txid: str
    sender: str
    bch_in: Decimal = Decimal('0')
    tokens_in: Decimal = Decimal('0')


class Chain(str, Enum):
    BCH = 'bch'
    AVAX = 'avax'
