"""
Offline import of explorer "export address token transfers" CSV files.

Columns: txHash, blockNumber, unixTimestamp, isoDateTime, from, to,
humanReadableAmount, usdAmountAtExport, contractAddress, tokenName, tokenSymbol.
Amounts in the export are already scaled to token units, so they are
re-quantized to the smallest unit (round half up) to match live data.
"""

import csv
import io
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional, Union

from fee_tracker.core.config import settings
from fee_tracker.services.models import Network, Transaction
from fee_tracker.services.symbols import STABLE_SYMBOLS, normalize_symbol

logger = logging.getLogger(__name__)

EXPECTED_COLUMNS = 11


def fee_address_for(network: Network) -> str:
    if network == Network.HYPEREVM:
        return settings.hyperevm_fee_address
    return settings.ethereum_fee_address


def to_smallest_unit(amount: str, decimals: int) -> int:
    """'1,234.5' with 6 decimals -> 1234500000; raises ValueError on garbage"""
    cleaned = amount.replace('"', "").replace(",", "").strip()
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Unparseable amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Unparseable amount: {amount!r}")
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def parse_csv_transactions(
    content: str,
    network: Network = Network.ETHEREUM,
    fee_address: Optional[str] = None,
) -> List[Transaction]:
    """
    Parse an explorer CSV export into fee Transactions.

    Rows that are not transfers into the fee address, use a currency we don't
    track, or carry malformed fields are skipped.
    """
    network = Network(network)
    fee_address = (fee_address or fee_address_for(network)).lower()
    transactions: List[Transaction] = []
    skipped = 0

    reader = csv.reader(io.StringIO(content.strip()))
    next(reader, None)  # header

    for line_no, values in enumerate(reader, start=2):
        if not values or not any(v.strip() for v in values):
            continue
        if len(values) < EXPECTED_COLUMNS:
            logger.warning(f"Line {line_no}: expected {EXPECTED_COLUMNS} columns, got {len(values)}")
            skipped += 1
            continue

        (tx_hash, block_no, unix_timestamp, _iso_datetime, from_address, to_address,
         token_value, _usd_value, _contract_address, token_name, token_symbol) = \
            [v.strip() for v in values[:EXPECTED_COLUMNS]]

        # Only transfers TO the fee address
        if to_address.lower() != fee_address:
            continue

        symbol = normalize_symbol(network.value, token_symbol, token_name)
        if symbol is None:
            continue
        decimals = 6 if symbol in STABLE_SYMBOLS else 18

        try:
            raw_value = to_smallest_unit(token_value, decimals)
            timestamp = int(unix_timestamp) * 1000
            block_number = int(block_no) if block_no else None
        except ValueError as e:
            logger.warning(f"Line {line_no}: skipping {tx_hash}: {e}")
            skipped += 1
            continue
        if raw_value <= 0:
            continue

        transactions.append(Transaction(
            hash=tx_hash,
            timestamp=timestamp,
            value=str(raw_value),
            token_symbol=symbol,
            token_decimal=decimals,
            from_address=from_address,
            to_address=to_address,
            network=network,
            block_number=block_number,
        ))

    logger.info(
        f"Loaded {len(transactions)} {network.value} transactions from CSV ({skipped} malformed rows skipped)"
    )
    return transactions


def load_csv_file(path: Union[str, Path], network: Network) -> List[Transaction]:
    return parse_csv_transactions(Path(path).read_text(encoding="utf-8"), network)
