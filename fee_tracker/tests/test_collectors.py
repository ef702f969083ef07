import asyncio

import pytest

from fee_tracker.core.errors import ErrorCode, InvalidNetworkError, ProviderError
from fee_tracker.services.collectors import CollectorRegistry, EthereumCollector, HyperEVMCollector
from fee_tracker.services.etherscan import MAX_BLOCK
from fee_tracker.services.models import CollectionResult, CollectionStatus, Network, PaginationResult
from fee_tracker.services.pagination import RangePaginator, WindowConfig

ETH_FEE = "0x4169447a424ec645f8a24dccfd8328f714dd5562"
HYPE_FEE = "0xbc0b9c63dc0581278d4b554af56858298bf2a9ec"
WINDOW = WindowConfig(1_000_000, 4)


def ethereum(fetcher, sleep, **kwargs):
    return EthereumCollector(
        fetcher, fee_address=ETH_FEE, chain_id=1,
        paginator=RangePaginator(fetcher, window_delay=0, sleep=sleep), window=WINDOW, **kwargs
    )


def hyperevm(fetcher, sleep):
    return HyperEVMCollector(
        fetcher, fee_address=HYPE_FEE, chain_id=999,
        paginator=RangePaginator(fetcher, window_delay=0, sleep=sleep), window=WINDOW
    )


@pytest.mark.asyncio
async def test_ethereum_keeps_only_fee_transfers(make_fetcher, make_transfer, sleep):
    fetcher = make_fetcher(records={1: [
        make_transfer(hash="0x1", symbol="USDC", value="2500000"),
        make_transfer(hash="0x2", symbol="WETH", value="10", decimals="18", block=101),
        make_transfer(hash="0x3", symbol="DAI", value="5", decimals="18"),
        make_transfer(hash="0x4", symbol="USDC", to="0xsomeoneelse"),
        make_transfer(hash="0x5", symbol="USDC", value="0"),
        make_transfer(hash="0x6", symbol="WETH", to=ETH_FEE.upper().replace("0X", "0x"), decimals="18"),
    ]})

    result = await ethereum(fetcher, sleep).collect(0)

    assert result.status == CollectionStatus.OK
    assert [tx.hash for tx in result.transactions] == ["0x1", "0x2", "0x6"]
    first = result.transactions[0]
    assert first.timestamp == 1_700_000_000 * 1000
    assert first.token_decimal == 6
    assert first.block_number == 100
    assert first.network == Network.ETHEREUM


@pytest.mark.asyncio
async def test_collect_scans_from_start_block_to_head(make_fetcher, sleep):
    fetcher = make_fetcher(latest=5000)
    await ethereum(fetcher, sleep).collect(1234)

    call = fetcher.calls_for(1)[0]
    assert (call["startblock"], call["endblock"]) == (1234, 5000)
    assert call["address"] == ETH_FEE


@pytest.mark.asyncio
async def test_hyperevm_symbols_are_normalized(make_fetcher, make_transfer, sleep):
    fetcher = make_fetcher(records={999: [
        make_transfer(hash="0x1", to=HYPE_FEE, symbol="USDC", decimals=""),
        make_transfer(hash="0x2", to=HYPE_FEE, symbol="WRHYPER", decimals=""),
        make_transfer(hash="0x3", to=HYPE_FEE, symbol="WHYPE2", name="Wrapped HYPE", decimals="18"),
        make_transfer(hash="0x4", to=HYPE_FEE, symbol="PURR", name="Purr"),
    ]})

    result = await hyperevm(fetcher, sleep).collect(0)

    assert [(tx.hash, tx.token_symbol, tx.token_decimal) for tx in result.transactions] == [
        ("0x1", "HUSDC", 6),
        ("0x2", "WHYPE", 18),
        ("0x3", "WHYPE", 18),
    ]


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_fetching(make_fetcher, sleep):
    fetcher = make_fetcher(api_key="")
    result = await ethereum(fetcher, sleep).collect(0)

    assert result.status == CollectionStatus.FAILED
    assert result.error_code == ErrorCode.MISSING_CREDENTIALS.value
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_first_page_failure_is_reported_not_raised(make_fetcher, sleep):
    fetcher = make_fetcher(errors={1: ProviderError("NOTOK")})
    result = await ethereum(fetcher, sleep).collect(0)

    assert result.status == CollectionStatus.FAILED
    assert result.error == "NOTOK"
    assert result.error_code == ErrorCode.PROVIDER_ERROR.value


@pytest.mark.asyncio
async def test_start_past_head_fetches_nothing(make_fetcher, sleep):
    fetcher = make_fetcher(latest=100)
    result = await ethereum(fetcher, sleep).collect(101)

    assert result.status == CollectionStatus.OK
    assert result.transactions == []
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_unknown_head_falls_back_to_max_block(make_fetcher, sleep):
    fetcher = make_fetcher(latest=ProviderError("NOTOK"))
    assert await ethereum(fetcher, sleep).end_block() == MAX_BLOCK


@pytest.mark.asyncio
async def test_internal_eth_transfers(make_fetcher, make_transfer, sleep):
    internal = make_transfer(hash="0xi1", symbol="", value="500000000000000000", action="txlistinternal")
    reverted = dict(make_transfer(hash="0xi2", value="7", action="txlistinternal"), isError="1")
    fetcher = make_fetcher(records={1: [make_transfer(hash="0x1"), internal, reverted]})

    result = await ethereum(fetcher, sleep, include_internal=True).collect(0)

    eth = [tx for tx in result.transactions if tx.is_internal_eth]
    assert [(tx.hash, tx.token_symbol, tx.token_decimal) for tx in eth] == [("0xi1", "ETH", 18)]
    assert len(fetcher.calls_for(1, "txlistinternal")) == 1


@pytest.mark.asyncio
async def test_one_network_failing_does_not_affect_the_other(make_fetcher, make_transfer, sleep):
    fetcher = make_fetcher(
        records={999: [make_transfer(hash="0xh", to=HYPE_FEE, symbol="WHYPE", decimals="18")]},
        errors={1: ProviderError("NOTOK")},
    )
    registry = CollectorRegistry([ethereum(fetcher, sleep), hyperevm(fetcher, sleep)])

    results = await registry.collect_all({Network.ETHEREUM: 0, Network.HYPEREVM: 0}, budget_seconds=30)

    assert results[Network.ETHEREUM].status == CollectionStatus.FAILED
    assert results[Network.HYPEREVM].status == CollectionStatus.OK
    assert [tx.hash for tx in results[Network.HYPEREVM].transactions] == ["0xh"]


def test_registry_lookup(make_fetcher, sleep):
    fetcher = make_fetcher()
    registry = CollectorRegistry([ethereum(fetcher, sleep), hyperevm(fetcher, sleep)])

    assert registry.get("hyperevm").chain_id == 999
    with pytest.raises(InvalidNetworkError):
        registry.get("solana")


@pytest.mark.asyncio
async def test_budget_backstop_keeps_finished_windows(make_fetcher, make_transfer, sleep, monkeypatch):
    monkeypatch.setattr("fee_tracker.services.collectors.BUDGET_GRACE_SECONDS", 0.05)

    class StallingFetcher(make_fetcher):
        async def fetch(self, params, max_retries=None, timeout=None):
            if params["startblock"] > 0:
                self.calls.append(dict(params))
                await asyncio.sleep(5)
            return await super().fetch(params, max_retries, timeout)

    fetcher = StallingFetcher(records={1: [make_transfer(hash=f"0x{i}", block=10 + i) for i in range(3)]})
    collector = EthereumCollector(
        fetcher, fee_address=ETH_FEE, chain_id=1,
        paginator=RangePaginator(fetcher, window_delay=0, sleep=sleep), window=WindowConfig(100, 4),
    )

    results = await CollectorRegistry([collector]).collect_all({Network.ETHEREUM: 0}, budget_seconds=0.05)

    result = results[Network.ETHEREUM]
    assert result.status == CollectionStatus.INCOMPLETE
    assert result.error == "Time budget exhausted"
    assert [tx.hash for tx in result.transactions] == ["0x0", "0x1", "0x2"]
    assert result.pagination.deadline_reached
    assert len(fetcher.calls_for(1)) == 2


def test_salvage_includes_internal_transfers(make_fetcher, make_transfer, sleep):
    collector = ethereum(make_fetcher(), sleep, include_internal=True)
    result = CollectionResult(
        network=Network.ETHEREUM,
        pagination=PaginationResult(records=[make_transfer(hash="0xt")]),
        internal_pagination=PaginationResult(records=[
            {"hash": "0xi", "blockNumber": "5", "timeStamp": "1", "from": "0xa", "to": ETH_FEE,
             "value": "10", "isError": "0"},
        ]),
    )

    assert [(tx.hash, tx.token_symbol) for tx in collector.salvage(result)] == [("0xt", "USDC"), ("0xi", "ETH")]
