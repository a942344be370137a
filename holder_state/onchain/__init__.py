"""On-chain wallet labeling helpers.

Versioned, offline entity registries (liquidity-pool infrastructure, DEX
traders) and the role oracle that answers membership queries against them.
"""

__all__ = [
    'registry',
]
