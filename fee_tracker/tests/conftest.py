import pytest
import pytest_asyncio

from fee_tracker.core.cache import InMemoryStore
from fee_tracker.services.models import Data, EmptySuccess

ETH_FEE = "0x4169447a424ec645f8a24dccfd8328f714dd5562"
HYPE_FEE = "0xbc0b9c63dc0581278d4b554af56858298bf2a9ec"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep; remembers delays and moves the fake clock"""
    def __init__(self, clock: FakeClock = None):
        self.calls = []
        self.clock = clock

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeFetcher:
    """
    In-process explorer. `records` maps chain id to rows, which are served by
    action and block range; `errors` maps chain id to an exception to raise.
    A custom `handler(params)` replaces both.
    """
    def __init__(self, records=None, errors=None, handler=None, api_key="test-key",
                 latest=1000, methods=None):
        self.records = records or {}
        self.errors = errors or {}
        self.handler = handler
        self.api_key = api_key
        self.latest = latest
        self.methods = methods or {}
        self.calls = []
        self.resolved = []

    async def fetch(self, params, max_retries=None, timeout=None):
        self.calls.append(dict(params))
        if self.handler is not None:
            result = self.handler(params)
            if isinstance(result, Exception):
                raise result
            return result

        chain_id = params.get("chainid")
        if chain_id in self.errors:
            raise self.errors[chain_id]
        rows = [
            r for r in self.records.get(chain_id, [])
            if r.get("_action", "tokentx") == params.get("action")
            and params["startblock"] <= int(r["blockNumber"]) <= params["endblock"]
        ]
        if not rows:
            return EmptySuccess("No transactions found")
        return Data(tuple(rows))

    async def latest_block(self, chain_id, timeout=None):
        if isinstance(self.latest, Exception):
            raise self.latest
        return self.latest

    async def resolve_method(self, tx_hash, chain_id):
        self.resolved.append(tx_hash)
        return self.methods.get(tx_hash)

    async def close(self):
        pass

    def calls_for(self, chain_id, action="tokentx"):
        return [c for c in self.calls if c.get("chainid") == chain_id and c.get("action") == action]


class StaticOracle:
    def __init__(self, prices=None):
        self.prices = {k.upper(): v for k, v in (prices or {}).items()}
        self.requested = []

    async def price_of_many(self, symbols):
        symbols = {s.upper() for s in symbols}
        self.requested.append(symbols)
        return {s: self.prices.get(s, 0.0) for s in symbols}

    async def close(self):
        pass


def transfer(hash="0xaaa", block=100, to=ETH_FEE, symbol="USDC", value="1000000", decimals="6",
             name="", timestamp=1_700_000_000, sender="0xsender", action="tokentx"):
    """Explorer token transfer row"""
    row = {
        "hash": hash,
        "blockNumber": str(block),
        "timeStamp": str(timestamp),
        "from": sender,
        "to": to,
        "value": value,
        "tokenName": name,
        "tokenSymbol": symbol,
        "tokenDecimal": decimals,
    }
    if action != "tokentx":
        row["_action"] = action
    return row


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest_asyncio.fixture
async def store(clock):
    """In-memory state store on the fake clock"""
    store = InMemoryStore(clock=clock)
    yield store
    await store.close()


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def make_transfer():
    return transfer


@pytest.fixture
def static_oracle():
    return StaticOracle({"USDC": 1.0, "HUSDC": 1.0, "WETH": 2000.0, "WHYPE": 25.0})
