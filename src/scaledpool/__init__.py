"""
scaledpool - Interest-Bearing Reserve Accounting

Off-chain accounting engine for a lending pool's deposit tokens.

Main Components:
- Scaled-balance ledger: shares times a monotonic liquidity index
- Rebase-reconciling wrapper: deposits of self-rebasing reserve assets
- Reward index tracker: pro-rata forwarding of farmed rewards
- Deposit token adapter: mint, burn, transfer, liquidation and flash-loan premiums
"""

__version__ = "0.1.0"
__author__ = "scaledpool Development Team"

__all__ = []
