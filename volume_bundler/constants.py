"""
Program ids, instruction discriminators and protocol limits.
"""
from solders.pubkey import Pubkey

NATIVE_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# Venue programs
CURVE_AMM_PROGRAM_ID = Pubkey.from_string("pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA")
CPMM_PROGRAM_ID = Pubkey.from_string("CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C")
CPMM_AUTHORITY = Pubkey.from_string("5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1")
AMM_V4_PROGRAM_ID = Pubkey.from_string("675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8")
ORDER_BOOK_MARKET_PROGRAM_ID = Pubkey.from_string("srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX")

# Anchor discriminators (first 8 bytes of sha256("global:<name>"))
CURVE_BUY_DISCRIMINATOR = bytes([102, 6, 61, 18, 1, 218, 235, 234])
CURVE_SELL_DISCRIMINATOR = bytes([51, 230, 133, 164, 1, 127, 131, 173])
CPMM_SWAP_BASE_INPUT_DISCRIMINATOR = bytes([143, 190, 90, 218, 196, 30, 51, 222])

# AMM v4 instruction tags
AMM_V4_SWAP_TAG = 9
AMM_V4_SOURCE_LEG_TAG = 0xBB
AMM_V4_DEST_LEG_TAG = 0xCC

# SPL token instruction tags
TOKEN_CLOSE_ACCOUNT_TAG = 9
TOKEN_SYNC_NATIVE_TAG = 17
ATA_CREATE_IDEMPOTENT_TAG = 1

# Jito block engine tip accounts
JITO_TIP_ACCOUNTS = [
    Pubkey.from_string("96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5"),
    Pubkey.from_string("HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe"),
    Pubkey.from_string("Cw8CFyM9FkoMi7K3Crf6HNQqf4uEMzpKw6QNghXLvLkY"),
    Pubkey.from_string("ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49"),
    Pubkey.from_string("DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh"),
    Pubkey.from_string("ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt"),
    Pubkey.from_string("DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL"),
]

# Limits
MAX_TRANSACTION_SIZE = 1232  # raw wire bytes
MAX_BUNDLE_TRANSACTIONS = 5
MAX_WALLETS_PER_CYCLE = 4
BASE_SIGNATURE_FEE_LAMPORTS = 5000
SWAP_ENVELOPE_SIGNATURES = 2  # ephemeral payer + main wallet
MAX_COMPUTE_UNITS_PER_TRANSACTION = 1_400_000

# Defaults
DEFAULT_FUNDING_LAMPORTS = 1_200_000
DEFAULT_FEE_RESERVE_LAMPORTS = 10_000
DEFAULT_DUST_THRESHOLD_LAMPORTS = 10_000
DEFAULT_PRIORITY_FEE_MICRO_LAMPORTS = 1000
DEFAULT_SLIPPAGE_BPS = 500
WRAP_BUFFER_NUMERATOR = 11  # wrap swap_amount * 1.1
WRAP_BUFFER_DENOMINATOR = 10
