"""
Bridge instructions carried in an X-chain memo.

Wire format: base64 of the UTF-8 text ``"<code> <destination>"`` where ``code``
is a ``BridgeCode`` integer and ``destination`` is a CashAddr on the BCH side,
e.g. ``"1 bitcoincash:qz9cq5...``". Anything else decodes to an invalid
instruction; unrelated transfers to the bridge address are routine.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Iterable

from .errors import InvalidArgument
from .models import BridgeCode, BridgeInstruction, ChainTx

LOGGER = logging.getLogger('token_liquidity.memo_codec')

_MEMO_RE = re.compile(r'^(?P<code>\d{1,3}) (?P<destination>\S+)$')
_CASHADDR_RE = re.compile(r'^(bitcoincash|bchtest|simpleledger|slptest):[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{42}$')

INVALID = BridgeInstruction(is_valid=False)


def parse_memo_from_64(encoded_memo: str) -> str:
    if not isinstance(encoded_memo, str):
        raise InvalidArgument(f'encoded memo must be of type string, got {type(encoded_memo).__name__}')
    return base64.b64decode(encoded_memo, validate=True).decode('utf-8')


def encode_memo(code: BridgeCode, destination: str) -> str:
    text = f'{int(code)} {destination}'
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


def decode_memo(encoded_memo: str, own_addresses: Iterable[str] = ()) -> BridgeInstruction:
    if not isinstance(encoded_memo, str):
        raise InvalidArgument(f'encoded memo must be of type string, got {type(encoded_memo).__name__}')

    try:
        text = parse_memo_from_64(encoded_memo)
    except (binascii.Error, UnicodeDecodeError):
        LOGGER.debug('memo is not base64 utf-8 memo=%r', encoded_memo)
        return INVALID

    match = _MEMO_RE.match(text.strip())
    if match is None:
        return INVALID

    try:
        code = BridgeCode(int(match.group('code')))
    except ValueError:
        return INVALID

    destination = match.group('destination').lower()
    if not _CASHADDR_RE.match(destination):
        return INVALID

    if destination in {a.lower() for a in own_addresses}:
        LOGGER.info('ignoring self-transfer instruction destination=%s', destination)
        return INVALID

    return BridgeInstruction(is_valid=True, code=code, destination_address=destination)


def extract_user_address(tx: ChainTx) -> str:
    if not tx.inputs:
        raise InvalidArgument(f'txid={tx.id} has no inputs')
    return tx.inputs[0].address
