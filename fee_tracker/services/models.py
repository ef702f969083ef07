"""
Domain types shared by the collectors, classifier, aggregator and API.

Transactions are frozen dataclasses: every annotation step (classification,
USD conversion) produces a new copy via dataclasses.replace.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field


class Network(str, Enum):
    ETHEREUM = "ethereum"
    HYPEREVM = "hyperevm"


class TransactionType(str, Enum):
    LOAN = "loan"
    SALE = "sale"
    UNKNOWN = "unknown"


class FeeCategory(str, Enum):
    LOAN_USDC = "loan_usdc"
    LOAN_WETH = "loan_weth"
    SALES_USDC = "sales_usdc"
    SALES_WETH = "sales_weth"
    UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class Transaction:
    """One token transfer into a fee-collection address"""
    hash: str
    timestamp: int                   # milliseconds since epoch
    value: str                       # raw integer amount in the token's smallest unit
    token_symbol: str
    token_decimal: int
    from_address: str
    to_address: str
    network: Network
    block_number: Optional[int] = None

    # Set by the classifier
    transaction_type: Optional[TransactionType] = None
    fee_category: Optional[FeeCategory] = None
    method: Optional[str] = None
    method_inferred: bool = False    # method guessed from amount, not decoded
    is_internal_eth: bool = False

    def identity(self) -> Tuple:
        """Key used to match a freshly collected transfer against a stored one"""
        return (
            self.network.value,
            self.hash.lower(),
            self.from_address.lower(),
            self.token_symbol,
            self.value,
            self.block_number,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["network"] = self.network.value
        data["transaction_type"] = self.transaction_type.value if self.transaction_type else None
        data["fee_category"] = self.fee_category.value if self.fee_category else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        return cls(
            hash=data["hash"],
            timestamp=int(data["timestamp"]),
            value=str(data["value"]),
            token_symbol=data["token_symbol"],
            token_decimal=int(data["token_decimal"]),
            from_address=data["from_address"],
            to_address=data["to_address"],
            network=Network(data["network"]),
            block_number=data.get("block_number"),
            transaction_type=TransactionType(data["transaction_type"]) if data.get("transaction_type") else None,
            fee_category=FeeCategory(data["fee_category"]) if data.get("fee_category") else None,
            method=data.get("method"),
            method_inferred=bool(data.get("method_inferred", False)),
            is_internal_eth=bool(data.get("is_internal_eth", False)),
        )


@dataclass(frozen=True)
class Cursor:
    """Last processed transfer for a network"""
    network: Network
    block_number: int
    timestamp: int
    hash: str
    last_updated: str  # ISO timestamp

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["network"] = self.network.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cursor":
        return cls(
            network=Network(data["network"]),
            block_number=int(data["block_number"]),
            timestamp=int(data["timestamp"]),
            hash=data["hash"],
            last_updated=data["last_updated"],
        )


# ===== Explorer envelope =====

@dataclass(frozen=True)
class Data:
    records: Tuple[Dict[str, Any], ...]
    possibly_truncated: bool = False


@dataclass(frozen=True)
class EmptySuccess:
    message: str = ""
    records: Tuple[Dict[str, Any], ...] = ()
    possibly_truncated: bool = False


@dataclass(frozen=True)
class Error:
    reason: str
    rate_limited: bool = False
    deprecated: bool = False
    invalid_key: bool = False


Envelope = Union[Data, EmptySuccess, Error]
PageResult = Union[Data, EmptySuccess]


@dataclass
class PaginationResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    truncated_windows: List[Tuple[int, int]] = field(default_factory=list)
    failed_windows: List[Tuple[int, int]] = field(default_factory=list)
    stopped_early: bool = False      # consecutive empty windows heuristic
    deadline_reached: bool = False
    last_block: Optional[int] = None  # last block covered by a fetched window

    @property
    def complete(self) -> bool:
        return not (self.truncated_windows or self.failed_windows or self.deadline_reached)


class CollectionStatus(str, Enum):
    OK = "ok"                  # fetched, possibly zero new transfers
    INCOMPLETE = "incomplete"  # partial data: skipped/truncated windows or budget hit
    FAILED = "failed"          # nothing usable, error attached


@dataclass
class CollectionResult:
    network: Network
    transactions: List[Transaction] = field(default_factory=list)
    status: CollectionStatus = CollectionStatus.OK
    error: Optional[str] = None
    error_code: Optional[str] = None
    start_block: int = 0
    pagination: Optional[PaginationResult] = None
    internal_pagination: Optional[PaginationResult] = None  # Ethereum call traces

    @property
    def complete(self) -> bool:
        return self.status == CollectionStatus.OK


# ===== Report =====

class CategoryAmount(BaseModel):
    total: float = 0.0
    total_usd: float = 0.0


class PeriodData(BaseModel):
    total: float = 0.0              # native units summed across currencies; advisory only
    total_usd: float = 0.0
    currencies: Dict[str, float] = Field(default_factory=dict)
    currencies_usd: Dict[str, float] = Field(default_factory=dict)
    by_category: Dict[str, CategoryAmount] = Field(default_factory=dict)


class CurrencyBreakdown(BaseModel):
    total: float = 0.0
    total_usd: float = 0.0
    percentage: float = 0.0


class CategoryBreakdown(CurrencyBreakdown):
    count: int = 0


class AggregatedFees(BaseModel):
    daily: Dict[str, PeriodData] = Field(default_factory=dict)
    weekly: Dict[str, PeriodData] = Field(default_factory=dict)
    monthly: Dict[str, PeriodData] = Field(default_factory=dict)
    currency_breakdown: Dict[str, CurrencyBreakdown] = Field(default_factory=dict)
    category_breakdown: Dict[str, CategoryBreakdown] = Field(default_factory=dict)
    prices: Dict[str, float] = Field(default_factory=dict)
    transaction_count: int = 0
    skipped_count: int = 0


class RecentTransaction(BaseModel):
    hash: str
    timestamp: int
    token_symbol: str
    value: str
    token_decimal: int
    from_address: str
    to_address: str
    network: Network
    usd_value: float
    transaction_type: TransactionType = TransactionType.UNKNOWN
    fee_category: FeeCategory = FeeCategory.UNCATEGORIZED
    method: Optional[str] = None


class NetworkStatus(BaseModel):
    status: CollectionStatus
    transactions: int = 0
    new_transactions: int = 0
    start_block: int = 0
    last_block: Optional[int] = None   # last block covered by a fetched window
    error: Optional[str] = None


class FeeReport(BaseModel):
    data: AggregatedFees
    recent_transactions: List[RecentTransaction] = Field(default_factory=list)
    source: str = "live"              # live / cached / demo
    is_demo: bool = False
    is_stale: bool = False
    incomplete: bool = False
    stats: Dict[str, int] = Field(default_factory=dict)
    networks: Dict[str, NetworkStatus] = Field(default_factory=dict)
    generated_at: str = ""
    warning: Optional[str] = None
