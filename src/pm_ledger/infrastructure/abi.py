"""Minimal MarketFactory ABI — only the functions and events we touch."""

from typing import Any

_MARKET_ID_INPUT = {"name": "marketId", "type": "uint256"}

MARKET_FACTORY_ABI: list[dict[str, Any]] = [
    {
        "name": "getMarket",
        "type": "function",
        "stateMutability": "view",
        "inputs": [_MARKET_ID_INPUT],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "id", "type": "uint256"},
                    {"name": "creator", "type": "address"},
                    {"name": "title", "type": "string"},
                    {"name": "description", "type": "string"},
                    {"name": "category", "type": "string"},
                    {"name": "createdAt", "type": "uint256"},
                    {"name": "endTime", "type": "uint256"},
                    {"name": "status", "type": "uint8"},
                    {"name": "totalVolume", "type": "uint256"},
                    {"name": "liquidity", "type": "uint256"},
                    {"name": "resolvedOutcome", "type": "uint256"},
                ],
            },
        ],
    },
    {
        "name": "closeMarket",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [_MARKET_ID_INPUT],
        "outputs": [],
    },
    {
        "name": "resolveMarket",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [_MARKET_ID_INPUT, {"name": "outcome", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "MarketCreated",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {**_MARKET_ID_INPUT, "indexed": True},
            {"name": "creator", "type": "address", "indexed": True},
            {"name": "title", "type": "string", "indexed": False},
            {"name": "endTime", "type": "uint256", "indexed": False},
        ],
    },
    {
        "name": "MarketClosed",
        "type": "event",
        "anonymous": False,
        "inputs": [{**_MARKET_ID_INPUT, "indexed": True}],
    },
    {
        "name": "MarketResolved",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {**_MARKET_ID_INPUT, "indexed": True},
            {"name": "outcome", "type": "uint256", "indexed": False},
        ],
    },
]

# Index of each field in the getMarket tuple
STRUCT_FIELDS = (
    "id", "creator", "title", "description", "category",
    "createdAt", "endTime", "status", "totalVolume", "liquidity", "resolvedOutcome",
)
