from solders.pubkey import Pubkey

# ============================================
# PROGRAM IDS
# ============================================
RAYDIUM_LAUNCHLAB_PROGRAM = Pubkey.from_string("LanMV9sAd7wArD4vJFi2qDdfnVhFxYSUg6eADduJ3uj")
PUMP_PROGRAM = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
RAYDIUM_V4_PROGRAM = Pubkey.from_string("675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8")
BONK_PLATFORM = Pubkey.from_string("8pCtbn9iatQ8493mDQax4xfEUjhoVBpUWYVQoRU18333")

# ============================================
# QUOTE MINTS
# ============================================
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")
USD1_MINT = Pubkey.from_string("USD1ttGY1N17NEEHLmELoaybftRBUSErhqYiQzvEmuB")

# Venue key -> program subscribed for logs
VENUE_PROGRAMS = {
    "launchlab": str(RAYDIUM_LAUNCHLAB_PROGRAM),
    "pump": str(PUMP_PROGRAM),
    "raydium_amm": str(RAYDIUM_V4_PROGRAM),
}

# ============================================
# TIMING
# ============================================
SLOT_TIME_MS = 400
MAX_MONITOR_BLOCKS = 8
# Extra slots of grace added to a block-based monitoring window
MONITOR_GRACE_BLOCKS = 2

MONITOR_TICK_SEC = 1.0
POSITION_TICK_SEC = 5.0
TRADE_POLL_TIMEOUT_SEC = 2.0

# ============================================
# EXECUTION
# ============================================
EMERGENCY_SLIPPAGE_BPS = 5000
# Rough SOL/USD used to size USD1 entries against SOL limits
USD1_PER_SOL_ESTIMATE = 150.0
# Token quantities at or below this are treated as fully sold
DUST_TOKEN_QTY = 1e-7
PRICE_EPSILON = 1e-9

TERMINAL_LOG_MAX_ENTRIES = 500
