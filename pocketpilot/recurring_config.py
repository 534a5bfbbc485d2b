# pocketpilot/recurring_config.py
# Central knobs for what counts as a subscription / recurring charge.

# --------------------------
# ALWAYS treat these categories as recurring (not Income)
# --------------------------
RECURRING_CATEGORIES = [
    "Subscriptions",
    "Utilities",
    "Housing",
    "Insurance",
    "Phone",
    "Internet",
    "Loan Payments",
]

# --------------------------
# Description keywords that hint something is recurring
# --------------------------
RECURRING_KEYWORDS = [
    "AUTOPAY", "AUTO PAY", "AUTO-PAY",
    "MONTHLY",
    "SUBSCRIPTION", "MEMBERSHIP",
    "PREMIUM", "INSURANCE",
    "RECURRING",
    "BILL PAY", "BILL PAYMENT",
]

# --------------------------
# NEVER report these as subscriptions (card payoffs, cash movement)
# --------------------------
DENY_MERCHANTS = [
    "MOBILE DEPOSIT", "ATM",
    "AMERICAN EXPRESS", "AMEX EPAYMENT",
    "CAPITAL ONE", "CAPITALONE",
    "CITI CARD", "CITICARD",
    "DISCOVER",
    "CHASE CREDIT", "CHASE CARD",
    "SYNCHRONY", "SYNCB",
    "BANKCARD", "CREDIT CARD",
]

# --------------------------
# Canonical vendor aliases (collapse variants into one stream label)
# --------------------------
CANONICAL_VENDOR_ALIASES = {
    "NETFLIX": ["NETFLIX COM", "NETFLIX INC"],
    "SPOTIFY": ["SPOTIFY USA", "SPOTIFY P"],
    "APPLE": ["APPLE COM BILL", "APL ITUNES"],
    "AMAZON PRIME": ["AMAZON PRIME", "PRIME VIDEO", "AMZN PRIME"],
    "OPENAI": ["OPENAI CHATGPT", "CHATGPT"],
}

# Words stripped when normalizing a merchant string
NOISE_WORDS = ("ONLINE", "PURCHASE", "PAYMENT", "AUTOPAY", "SUBSCRIPTION", "RECURRING",
               "WWW", "COM", "INC", "LLC", "CORP", "THE", "POS", "DEBIT", "CARD")

# --------------------------
# Detection thresholds
# --------------------------
MIN_OCCURRENCES = 2
AMOUNT_TOLERANCE_DOLLARS = 3.0
AMOUNT_TOLERANCE_PCT = 0.05
VARIANCE_TOLERANCE = 0.15
MISSED_GRACE_DAYS = 7
LOOKBACK_DAYS = 180

MONTHLY_EQUIV_RATIO = {
    "weekly": 52.0 / 12.0,
    "biweekly": 26.0 / 12.0,
    "monthly": 1.0,
    "quarterly": 1.0 / 3.0,
    "annual": 1.0 / 12.0,
}
