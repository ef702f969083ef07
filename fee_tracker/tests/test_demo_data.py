from fee_tracker.core.config import settings
from fee_tracker.services.demo_data import ONE_DAY_MS, generate_demo_data
from fee_tracker.services.models import Network

NOW = 1_700_000_000_000


def test_demo_transfers_go_to_configured_fee_addresses():
    transactions = generate_demo_data(days=10, seed=3, now_ms=NOW)

    expected = {
        Network.ETHEREUM: settings.ethereum_fee_address,
        Network.HYPEREVM: settings.hyperevm_fee_address,
    }
    assert {tx.network for tx in transactions} == {Network.ETHEREUM, Network.HYPEREVM}
    assert all(tx.to_address == expected[tx.network] for tx in transactions)


def test_demo_data_is_seeded_and_bounded():
    first = generate_demo_data(days=5, seed=11, now_ms=NOW)
    second = generate_demo_data(days=5, seed=11, now_ms=NOW)

    assert [tx.hash for tx in first] == [tx.hash for tx in second]
    assert all(NOW - 5 * ONE_DAY_MS < tx.timestamp < NOW + ONE_DAY_MS for tx in first)
    assert all(tx.token_symbol == "ETH" for tx in first if tx.is_internal_eth)
    assert {tx.token_symbol for tx in first if tx.network == Network.HYPEREVM} <= {"HUSDC", "WHYPE"}
