"""Program ids and ledger constants."""

from __future__ import annotations

from solders.pubkey import Pubkey

LAMPORTS_PER_SOL = 1_000_000_000

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")

# Wrapped SOL mint; token accounts for it are never reclaimed.
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

# SPL Token CloseAccount instruction index
CLOSE_ACCOUNT_IX = bytes([9])

BPS_DENOMINATOR = 10_000

# Closes per transaction. 13 also fits; see DESIGN.md.
DEFAULT_MAX_PER_TX = 8
DEFAULT_FEE_BPS = 300

# Max serialized transaction size accepted by the cluster.
PACKET_DATA_SIZE = 1232

# getMultipleAccounts accepts at most 100 keys.
MULTIPLE_ACCOUNTS_LIMIT = 100

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
