"""
Demo dataset so the dashboard has something to show before an API key is set.
"""

import random
import time
from typing import List, Optional

from fee_tracker.core.config import settings
from fee_tracker.services.models import Network, Transaction

ONE_DAY_MS = 24 * 60 * 60 * 1000
ONE_HOUR_MS = 60 * 60 * 1000

LOAN_METHODS = ["Emit Loan", "Repay Loan", "Refinance Full", "Refinance Tranche", "Smart Migrate"]
SALE_METHODS = ["Buy", "Sell", "Execute Sell"]


def generate_demo_data(days: int = 30, seed: Optional[int] = None, now_ms: Optional[int] = None) -> List[Transaction]:
    """
    Random fee transfers over the last `days` days on both networks:
    roughly 30% loan fees, 70% sale fees, some sales paid as internal ETH.
    """
    rng = random.Random(seed)
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    transactions: List[Transaction] = []
    fee_addresses = {
        Network.ETHEREUM: settings.ethereum_fee_address,
        Network.HYPEREVM: settings.hyperevm_fee_address,
    }

    for i in range(days):
        day_start = now_ms - i * ONE_DAY_MS
        weekday = time.gmtime(day_start / 1000).tm_wday
        # More activity on weekdays
        tx_count = rng.randint(2, 6) if weekday < 5 else rng.randint(1, 3)

        for j in range(tx_count):
            timestamp = day_start + j * ONE_HOUR_MS
            network = Network.ETHEREUM if i % 2 == 0 else Network.HYPEREVM
            is_loan = rng.random() < 0.3
            is_internal_eth = network == Network.ETHEREUM and not is_loan and rng.random() < 0.15

            if is_internal_eth:
                symbol = "ETH"
            elif network == Network.ETHEREUM:
                symbol = rng.choice(["USDC", "WETH"])
            else:
                symbol = rng.choice(["HUSDC", "WHYPE"])

            decimals = 6 if symbol in ("USDC", "HUSDC") else 18
            if symbol in ("USDC", "HUSDC"):
                amount = rng.uniform(200, 8000) if is_loan else rng.uniform(10, 900)
            elif symbol == "WHYPE":
                amount = rng.uniform(5, 120) if is_loan else rng.uniform(0.5, 30)
            else:
                amount = rng.uniform(0.1, 3) if is_loan else rng.uniform(0.005, 0.4)

            method = None if is_internal_eth else rng.choice(LOAN_METHODS if is_loan else SALE_METHODS)

            transactions.append(Transaction(
                hash="0x" + "".join(rng.choice("0123456789abcdef") for _ in range(64)),
                timestamp=timestamp,
                value=str(int(round(amount * 10 ** min(decimals, 9))) * 10 ** (decimals - min(decimals, 9))),
                token_symbol=symbol,
                token_decimal=decimals,
                from_address="0x" + "".join(rng.choice("0123456789abcdef") for _ in range(40)),
                to_address=fee_addresses[network],
                network=network,
                block_number=None,
                method=method,
                is_internal_eth=is_internal_eth,
            ))

    return transactions
