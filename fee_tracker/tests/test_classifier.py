import pytest

from fee_tracker.services.classifier import Classifier, classify_type, fee_category
from fee_tracker.services.models import FeeCategory, Network, Transaction, TransactionType


def tx(symbol="USDC", value="1000000", decimals=6, method=None, internal=False):
    return Transaction(
        hash="0x1", timestamp=0, value=value, token_symbol=symbol, token_decimal=decimals,
        from_address="0xa", to_address="0xb", network=Network.ETHEREUM, method=method,
        is_internal_eth=internal,
    )


@pytest.mark.parametrize("method,expected", [
    ("Emit Loan", TransactionType.LOAN),
    ("Repay Loan", TransactionType.LOAN),
    ("Refinance From Loan Execution Data", TransactionType.LOAN),
    ("Smart Migrate", TransactionType.LOAN),
    ("Execute Sell", TransactionType.SALE),
    ("Buy", TransactionType.SALE),
    ("Transfer", TransactionType.UNKNOWN),
    (None, TransactionType.UNKNOWN),
])
def test_classify_type(method, expected):
    assert classify_type(method) == expected


def test_internal_eth_is_always_a_sale():
    assert classify_type(None, is_internal_eth=True) == TransactionType.SALE
    assert fee_category(TransactionType.UNKNOWN, "ETH", is_internal_eth=True) == FeeCategory.SALES_WETH


def test_categories_fold_network_symbols():
    assert fee_category(TransactionType.LOAN, "HUSDC") == FeeCategory.LOAN_USDC
    assert fee_category(TransactionType.LOAN, "WHYPE") == FeeCategory.LOAN_WETH
    assert fee_category(TransactionType.SALE, "USDC") == FeeCategory.SALES_USDC
    assert fee_category(TransactionType.SALE, "WETH") == FeeCategory.SALES_WETH


def test_unknown_type_or_symbol_is_uncategorized():
    assert fee_category(TransactionType.UNKNOWN, "USDC") == FeeCategory.UNCATEGORIZED
    assert fee_category(TransactionType.LOAN, "XYZ") == FeeCategory.UNCATEGORIZED


def test_classification_is_idempotent():
    classifier = Classifier()
    once = classifier.annotate(tx(method="Repay Loan"))
    twice = classifier.annotate(once)

    assert once == twice
    assert classifier.classify(once) == (TransactionType.LOAN, FeeCategory.LOAN_USDC)


def test_magnitude_heuristic_is_off_by_default():
    result = Classifier().annotate(tx(symbol="WETH", value=str(10 * 10**18), decimals=18))
    assert result.transaction_type == TransactionType.UNKNOWN
    assert result.method is None
    assert not result.method_inferred


def test_magnitude_heuristic_flags_inferred_methods():
    classifier = Classifier(use_magnitude_heuristic=True)

    big = classifier.annotate(tx(symbol="WETH", value=str(10 * 10**18), decimals=18))
    assert big.transaction_type == TransactionType.LOAN
    assert big.method_inferred

    small = classifier.annotate(tx(symbol="USDC", value="50000000"))
    assert small.transaction_type == TransactionType.SALE
    assert small.method_inferred

    decoded = classifier.annotate(tx(method="Execute Sell", value=str(9000 * 10**6)))
    assert decoded.transaction_type == TransactionType.SALE
    assert not decoded.method_inferred


def test_classify_all_keeps_order():
    items = [tx(method="Buy"), tx(method="Emit Loan"), tx()]
    result = Classifier().classify_all(items)
    assert [t.transaction_type for t in result] == [
        TransactionType.SALE, TransactionType.LOAN, TransactionType.UNKNOWN
    ]
