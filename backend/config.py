import os

DB_PATH = os.environ.get("ZEN_DB_PATH", "zentrade.db")

# Blob keys in the kv store
STATE_KEY = "portfolio_state"
JOURNAL_KEY = "journal"

# A trading day starts at 07:00 Taipei time (UTC+8)
TRADING_DAY_UTC_OFFSET_HOURS = 8
TRADING_DAY_CUTOVER_HOUR = 7

BUCKETS = ("ETF", "Trading", "Hedge")

ALLOCATION_RULES = {
    # ETF core: target 25%, range 20-30%
    "etf_min":               0.20,
    "etf_max":               0.30,
    # Active trading: alert range 45-55%
    "trading_min":           0.45,
    "trading_max":           0.55,
    "trading_count_min":     3,
    "trading_count_max":     5,
    "trading_symbol_max":    0.15,
    # Cash + hedge: alert range 15-35%
    "hedge_min":             0.15,
    "hedge_max":             0.35,
    "hedge_only_max":        0.10,
    "hedge_symbol_max":      0.08,
}

MONTHLY_ADJUSTMENT_DAYS = 30
NEVER_ADJUSTED_DAYS = 999

STEP_POINTS = {"pass": 3, "warn": 2, "fail": 1, "pending": 0}
SCORE_GO = 19
SCORE_CONSIDER = 16
SCORE_WATCH = 13

CHECKLIST_STEPS = [
    {"id": 1, "label": "Price & Volume", "description": "Clean pattern with volume confirming price? A fail here disqualifies the trade."},
    {"id": 2, "label": "OBV",            "description": "Trend confirmation. Is OBV making new highs with price?"},
    {"id": 3, "label": "A/D Line",       "description": "Conviction of the main money. Any sign of accumulation?"},
    {"id": 4, "label": "CMF",            "description": "Money flow. Only watch for a flip negative, used as a brake."},
    {"id": 5, "label": "RSI",            "description": "Support in the 40-50 zone? Divergence check. No decisions on overbought/oversold alone."},
    {"id": 6, "label": "Moving Averages", "description": "Correct stacking? Is there MA support underneath?"},
    {"id": 7, "label": "ATR",            "description": "Volatility normal? Enough room to place a stop?"},
]

VETO_REASONS = [
    "Market Chop",
    "Low Volume",
    "2 Consecutive Losses",
    "Emotional/Revenge",
    "FOMO",
]

COACH_QUOTES = {
    "tradable": [
        "Patience is the hunter's virtue. Good luck.",
        "Plan your trade, trade your plan.",
        "Stay calm, run the system.",
    ],
    "watch": [
        "Waiting is also a position.",
        "Let the bullets fly a little longer.",
        "No rush, the market will still be here.",
    ],
    "banned": [
        "Capital first. Well done.",
        "Resting is how you go the distance.",
        "Risk avoided is the biggest win.",
    ],
}

DEFAULT_RISK_PCT = 1.0
HIGH_CONCENTRATION_PCT = 0.20

BACKUP_VERSION = "1.0"

CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]
