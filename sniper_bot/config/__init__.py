"""Config package"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from .policy import (
    SniperPolicy,
    PolicyManager,
    build_policy,
    deep_merge,
    PRESETS,
    KNOWN_POOLS,
    TimingConfig,
    EntryFilters,
    ExecutionConfig,
    AutoSellConfig,
    SafetyConfig,
    TargetingConfig,
    AdvancedConfig,
    MonitorConfig
)

# ============================================
# ENDPOINTS & CREDENTIALS
# ============================================
RPC_URL = os.getenv("RPC_URL")
WSS_URL = os.getenv("WSS_URL") or (RPC_URL.replace("https", "wss") if RPC_URL else None)
TG_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TG_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
JUPITER_PRICE_API = os.getenv("JUPITER_PRICE_API", "https://lite-api.jup.ag/price/v3")
DEXSCREENER_API_BASE = os.getenv("DEXSCREENER_API_BASE", "https://api.dexscreener.com")

# ============================================
# POLICY & VENUES
# ============================================
SNIPER_POLICY_PATH = os.getenv("SNIPER_POLICY_PATH")
SNIPER_PRESET = os.getenv("SNIPER_PRESET") or None
SNIPER_VENUES_PATH = os.getenv("SNIPER_VENUES_PATH")

# ============================================
# RUNTIME
# ============================================
PAPER_TRADING_MODE = os.getenv("PAPER_TRADING_MODE", "True").lower() == "true"
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SNAPSHOT_PATH = os.getenv("SNAPSHOT_PATH", "data/sniper_snapshot.json")
AUDIT_PATH = os.getenv("AUDIT_PATH", "data/sniper_audit.jsonl")
API_TIMEOUT_SEC = float(os.getenv("API_TIMEOUT_SEC", "10"))
