"""
Fee classification.

A transfer is a loan fee or a sale fee depending on which contract method
produced it. The method name comes from decoding the transaction's call data
(see EtherscanClient.resolve_method); when it's missing we can only say
"unknown", except for internal ETH transfers which are always sale proceeds.

Optionally, a method can be guessed from the transfer amount. The thresholds
were tuned by eye against observed data and have no protocol meaning, so the
guess is off by default and every guessed method is flagged `method_inferred`.
"""

import logging
from collections import Counter
from dataclasses import replace
from typing import List, Optional, Tuple

from fee_tracker.services.aggregate import native_value
from fee_tracker.services.models import FeeCategory, Transaction, TransactionType
from fee_tracker.services.symbols import NATIVE_SYMBOLS, STABLE_SYMBOLS

logger = logging.getLogger(__name__)

# Method names as shown by the explorer
LOAN_METHODS = [
    "emit loan",           # New loan originations
    "repay loan",          # Loan repayments
    "refinance full",      # Full refinancing
    "refinance tranche",   # Tranche refinancing
    "refinance",           # General refinancing
    "smart migrate",       # Smart migration fees
]

SALE_METHODS = [
    "buy",
    "sell",
    "execute sell",
]

STABLE_BUCKET = "USDC"
NATIVE_BUCKET = "WETH"


def classify_type(method: Optional[str], is_internal_eth: bool = False) -> TransactionType:
    """Loan / sale / unknown from a method name"""
    if method:
        name = method.lower().strip()
        if any(m in name for m in LOAN_METHODS):
            return TransactionType.LOAN
        if any(m in name for m in SALE_METHODS):
            return TransactionType.SALE

    if is_internal_eth:
        return TransactionType.SALE
    return TransactionType.UNKNOWN


def currency_bucket(symbol: str) -> Optional[str]:
    """Fold every network's stable and native symbols into two buckets"""
    symbol = (symbol or "").upper()
    if symbol in STABLE_SYMBOLS:
        return STABLE_BUCKET
    if symbol in NATIVE_SYMBOLS:
        return NATIVE_BUCKET
    return None


def fee_category(transaction_type: TransactionType, symbol: str, is_internal_eth: bool = False) -> FeeCategory:
    if is_internal_eth:
        return FeeCategory.SALES_WETH

    bucket = currency_bucket(symbol)
    if transaction_type == TransactionType.UNKNOWN or bucket is None:
        return FeeCategory.UNCATEGORIZED
    if transaction_type == TransactionType.LOAN:
        return FeeCategory.LOAN_USDC if bucket == STABLE_BUCKET else FeeCategory.LOAN_WETH
    return FeeCategory.SALES_USDC if bucket == STABLE_BUCKET else FeeCategory.SALES_WETH


def infer_method_from_magnitude(tx: Transaction) -> Optional[str]:
    """Best-effort method guess from the transfer size (fallback tier only)"""
    try:
        amount = native_value(tx.value, tx.token_decimal)
    except ValueError:
        return None

    bucket = currency_bucket(tx.token_symbol)
    if bucket == NATIVE_BUCKET:
        if amount > 5:
            return "emit loan"
        if amount > 0.5:
            return "repay loan"
    elif bucket == STABLE_BUCKET:
        if amount > 5000:
            return "emit loan"
        if amount > 1000:
            return "refinance"

    if amount < 1000:
        return "buy"
    return None


class Classifier:
    def __init__(self, use_magnitude_heuristic: bool = False):
        self.use_magnitude_heuristic = use_magnitude_heuristic

    def classify(self, tx: Transaction) -> Tuple[TransactionType, FeeCategory]:
        """Pure: the same transaction always yields the same pair"""
        transaction_type = classify_type(tx.method, tx.is_internal_eth)
        return transaction_type, fee_category(transaction_type, tx.token_symbol, tx.is_internal_eth)

    def annotate(self, tx: Transaction) -> Transaction:
        """Return a classified copy of tx"""
        if not tx.method and not tx.is_internal_eth and self.use_magnitude_heuristic:
            guessed = infer_method_from_magnitude(tx)
            if guessed:
                tx = replace(tx, method=guessed, method_inferred=True)

        transaction_type, category = self.classify(tx)
        return replace(tx, transaction_type=transaction_type, fee_category=category)

    def classify_all(self, transactions: List[Transaction]) -> List[Transaction]:
        logger.info(f"Classifying {len(transactions)} transactions by method...")
        classified = [self.annotate(tx) for tx in transactions]

        type_count = Counter(tx.transaction_type.value for tx in classified)
        category_count = Counter(tx.fee_category.value for tx in classified)
        inferred = sum(1 for tx in classified if tx.method_inferred)
        logger.info(f"Transaction type summary: {dict(type_count)}")
        logger.info(f"Fee category summary: {dict(category_count)}")
        if inferred:
            logger.info(f"{inferred} methods inferred from amounts")
        return classified
