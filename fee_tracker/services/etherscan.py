"""
Etherscan V2 client.

One endpoint serves every chain (selected with `chainid`). Each call has its
own deadline and runs under a RetryPolicy; the `{status, message, result}`
envelope is turned into Data / EmptySuccess / Error right here so nothing
downstream looks at raw status strings.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from fee_tracker.core.config import settings
from fee_tracker.core.errors import ProviderError, RateLimitError
from fee_tracker.core.retry import RetryPolicy
from fee_tracker.services.models import Data, EmptySuccess, Envelope, Error, PageResult

logger = logging.getLogger(__name__)

# Etherscan returns at most 10,000 rows per call
PAGE_SIZE_CAP = 10_000
MAX_BLOCK = 99_999_999

EMPTY_RESULT_MESSAGES = (
    "no transactions found",
    "no records found",
    "no token transfers found",
)

# 4-byte selectors of the fee-generating contract calls
METHOD_SELECTORS = {
    "0x8b661592": "Execute Sell",
    "0x761976ea": "Refinance From Loan Execution Data",
}


def parse_envelope(payload: Any) -> Envelope:
    """Classify an explorer response body."""
    if not isinstance(payload, dict):
        return Error(f"Unexpected response format: {type(payload).__name__}")

    status = str(payload.get("status", ""))
    message = str(payload.get("message", ""))
    result = payload.get("result")

    if status == "1":
        if isinstance(result, list):
            if not result:
                return EmptySuccess(message)
            return Data(tuple(result), possibly_truncated=len(result) == PAGE_SIZE_CAP)
        return Error(f"Unexpected result type: {type(result).__name__}")

    if status == "0":
        # Deprecation notices sometimes still carry rows
        if isinstance(result, list) and result:
            return Data(tuple(result), possibly_truncated=len(result) == PAGE_SIZE_CAP)

        result_text = result if isinstance(result, str) else ""
        text = f"{message} {result_text}".lower()
        if any(m in text for m in EMPTY_RESULT_MESSAGES):
            return EmptySuccess(message)

        return Error(
            result_text or message or "NOTOK",
            rate_limited="rate limit" in text,
            deprecated="deprecated" in text,
            invalid_key="api key" in text and ("invalid" in text or "missing" in text),
        )

    return Error(f"Unexpected status {status!r}: {message}")


class EtherscanClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        timeout_seconds: float = 30.0,
        sleep=asyncio.sleep,
    ):
        self.api_key = settings.etherscan_api_key if api_key is None else api_key
        self.base_url = base_url or settings.etherscan_base_url
        self.client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5)
        )
        self.max_retries = settings.fetch_max_retries if max_retries is None else max_retries
        self.backoff_seconds = settings.fetch_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.timeout_seconds = timeout_seconds
        self.sleep = sleep

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    def policy(self, max_retries: Optional[int] = None, name: str = "etherscan") -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries if max_retries is None else max_retries,
            base_delay=self.backoff_seconds,
            sleep=self.sleep,
            name=name,
        )

    async def _get_json(self, params: Dict[str, Any], timeout: Optional[float]) -> Any:
        query = dict(params)
        if self.api_key:
            query["apikey"] = self.api_key

        deadline = timeout or self.timeout_seconds
        try:
            # wait_for cancels the in-flight request when the deadline passes
            response = await asyncio.wait_for(self.client.get(self.base_url, params=query), deadline)
        except asyncio.TimeoutError:
            logger.warning(f"Explorer request timed out after {deadline:.1f}s ({_describe(params)})")
            raise
        response.raise_for_status()
        return response.json()

    async def _fetch_once(self, params: Dict[str, Any], timeout: Optional[float]) -> PageResult:
        envelope = parse_envelope(await self._get_json(params, timeout))

        if isinstance(envelope, Error):
            if envelope.rate_limited:
                logger.warning(f"Explorer rate limit hit: {envelope.reason}")
                raise RateLimitError(envelope.reason)
            if envelope.deprecated:
                logger.error(f"Explorer endpoint reported as deprecated: {envelope.reason}")
            elif envelope.invalid_key:
                logger.error(f"Explorer rejected API key: {envelope.reason}")
            else:
                logger.warning(f"Explorer error response: {envelope.reason}")
            raise ProviderError(envelope.reason)

        if isinstance(envelope, EmptySuccess):
            logger.debug(f"Explorer returned no records ({_describe(params)})")
        elif envelope.possibly_truncated:
            logger.warning(
                f"Explorer returned exactly {PAGE_SIZE_CAP} rows - result may be truncated ({_describe(params)})"
            )
        return envelope

    async def fetch(
        self,
        params: Dict[str, Any],
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> PageResult:
        """
        Fetch one page of account data.

        Args:
            params: query parameters without the API key
            max_retries: attempts before giving up (defaults to settings)
            timeout: hard deadline in seconds for each attempt

        Returns:
            Data (with possibly_truncated set at the page cap) or EmptySuccess.
            Raises the last error once retries are exhausted.
        """
        return await self.policy(max_retries).call(self._fetch_once, params, timeout)

    # ===== JSON-RPC proxy helpers =====

    async def _proxy_once(self, params: Dict[str, Any], timeout: Optional[float]) -> Any:
        data = await self._get_json(params, timeout)
        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected proxy response: {type(data).__name__}")
        if data.get("error"):
            error = data["error"]
            raise ProviderError(error.get("message", str(error)) if isinstance(error, dict) else str(error))
        if str(data.get("status", "")) == "0":
            envelope = parse_envelope(data)
            reason = envelope.reason if isinstance(envelope, Error) else data.get("message", "NOTOK")
            if isinstance(envelope, Error) and envelope.rate_limited:
                raise RateLimitError(reason)
            raise ProviderError(reason)
        return data.get("result")

    async def latest_block(self, chain_id: int, timeout: Optional[float] = None) -> int:
        """Current chain head, used to bound block range pagination"""
        result = await self.policy(name="eth_blockNumber").call(
            self._proxy_once,
            {"chainid": chain_id, "module": "proxy", "action": "eth_blockNumber"},
            timeout,
        )
        if not isinstance(result, str) or not result.startswith("0x"):
            raise ProviderError(f"Unexpected block number: {result!r}")
        return int(result, 16)

    async def get_transaction_input(self, tx_hash: str, chain_id: int) -> Optional[str]:
        """Fetch the calldata of a transaction"""
        result = await self.policy(max_retries=1, name="eth_getTransactionByHash").call(
            self._proxy_once,
            {"chainid": chain_id, "module": "proxy", "action": "eth_getTransactionByHash", "txhash": tx_hash},
            None,
        )
        if isinstance(result, dict):
            return result.get("input")
        return None

    async def resolve_method(self, tx_hash: str, chain_id: int) -> Optional[str]:
        """
        Decode a transaction's method name from its 4-byte selector.
        Returns None when the call data can't be fetched or the selector is unknown.
        """
        try:
            input_data = await self.get_transaction_input(tx_hash, chain_id)
        except Exception as e:
            logger.warning(f"Failed to fetch input for {tx_hash}: {e}")
            return None
        return decode_method(input_data)


def decode_method(input_data: Optional[str]) -> Optional[str]:
    if not input_data or not input_data.startswith("0x") or len(input_data) < 10:
        return None
    return METHOD_SELECTORS.get(input_data[:10].lower())


def _describe(params: Dict[str, Any]) -> str:
    return (
        f"chain {params.get('chainid')}, {params.get('action')}, "
        f"blocks {params.get('startblock', '-')}..{params.get('endblock', '-')}"
    )
