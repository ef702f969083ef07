"""
HyperEVM fee collector (chain id 999, same Etherscan V2 endpoint).

HyperEVM's USDC is a different asset from Ethereum's, so it is retagged as
HUSDC. Wrapped HYPE shows up under several symbols and is folded into WHYPE.
"""

from typing import Optional

from fee_tracker.core.config import settings
from fee_tracker.services.collectors.base import NetworkCollector
from fee_tracker.services.etherscan import EtherscanClient
from fee_tracker.services.models import Network
from fee_tracker.services.pagination import RangePaginator, WindowConfig
from fee_tracker.services.symbols import normalize_symbol


class HyperEVMCollector(NetworkCollector):

    def __init__(
        self,
        fetcher: EtherscanClient,
        fee_address: Optional[str] = None,
        chain_id: Optional[int] = None,
        paginator: Optional[RangePaginator] = None,
        window: Optional[WindowConfig] = None,
    ):
        super().__init__(
            fetcher,
            fee_address or settings.hyperevm_fee_address,
            chain_id or settings.hyperevm_chain_id,
            paginator=paginator,
            window=window,
        )

    @property
    def network(self) -> Network:
        return Network.HYPEREVM

    def normalize_symbol(self, symbol: str, token_name: str) -> Optional[str]:
        return normalize_symbol(self.network.value, symbol, token_name)
