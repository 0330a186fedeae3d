from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from .models import GenesisConfig


@lru_cache(maxsize=1)
def load_genesis() -> GenesisConfig:
    return GenesisConfig(
        bch_original_balance=Decimal(os.getenv('BCH_QTY_ORIGINAL', '25')),
        token_original_balance=Decimal(os.getenv('TOKENS_QTY_ORIGINAL', '5000')),
        bch_addr=os.getenv('BCH_ADDR', '').strip(),
        slp_addr=os.getenv('SLP_ADDR', '').strip(),
        avax_addr=os.getenv('AVAX_ADDR', '').strip(),
        token_id=os.getenv('TOKEN_ID', '').strip(),
        avax_token_id=os.getenv('AVAX_TOKEN_ID', '').strip()
    )
