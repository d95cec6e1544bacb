"""
airdrop: batched distribution of an asset from one custodial account to many
recipients on the XRP Ledger.
"""

__version__ = "0.1.0"
