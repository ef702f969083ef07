"""
Canonical currency symbols.

HyperEVM USDC is retagged HUSDC when collected so it never shares a bucket
with Ethereum USDC once both networks are aggregated together.
"""

from typing import Optional

ETHEREUM_SYMBOLS = ["USDC", "WETH"]
ETHEREUM_INTERNAL_SYMBOL = "ETH"
HYPEREVM_SYMBOLS = ["HUSDC", "WHYPE"]

# Explorer spellings folded into a canonical symbol
ETHEREUM_ALIASES = {
    "USDC": "USDC",
    "WETH": "WETH",
    "WETHEREUM": "WETH",
}
HYPEREVM_ALIASES = {
    "USDC": "HUSDC",
    "WHYPE": "WHYPE",
    "WRHYPER": "WHYPE",
}

STABLE_SYMBOLS = frozenset({"USDC", "HUSDC"})
NATIVE_SYMBOLS = frozenset({"ETH", "WETH", "WHYPE"})

RECOGNIZED_SYMBOLS = frozenset(ETHEREUM_SYMBOLS + [ETHEREUM_INTERNAL_SYMBOL] + HYPEREVM_SYMBOLS)

# Display symbol -> symbol used for price lookup
PRICING_SYMBOLS = {
    "ETH": "WETH",
}


def pricing_symbol(symbol: str) -> str:
    symbol = symbol.upper()
    return PRICING_SYMBOLS.get(symbol, symbol)


def normalize_symbol(network: str, symbol: str, token_name: str = "") -> Optional[str]:
    """Canonical symbol for an explorer token on a network, or None when it isn't a fee currency"""
    symbol = (symbol or "").strip().upper()
    token_name = (token_name or "").strip().upper()
    if network == "hyperevm":
        if symbol in HYPEREVM_ALIASES:
            return HYPEREVM_ALIASES[symbol]
        if "WRAP" in token_name and "HYPE" in token_name:
            return "WHYPE"
        return None
    return ETHEREUM_ALIASES.get(symbol)
