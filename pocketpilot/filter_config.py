# pocketpilot/filter_config.py
# Keyword tables for the offline categorizer. UPPERCASE; substring match unless
# listed in STRICT_BOUNDARY_KEYWORDS.

# --------------------------
# System budget categories (code -> display name)
# --------------------------
SYSTEM_CATEGORIES = [
    {"code": "INCOME", "name": "Income"},
    {"code": "GROCERIES", "name": "Groceries"},
    {"code": "DINING", "name": "Dining Out"},
    {"code": "TRANSPORT", "name": "Transportation"},
    {"code": "UTILITIES", "name": "Utilities"},
    {"code": "HOUSING", "name": "Housing"},
    {"code": "SUBSCRIPTIONS", "name": "Subscriptions"},
    {"code": "SHOPPING", "name": "Shopping"},
    {"code": "HEALTH", "name": "Health"},
    {"code": "ENTERTAINMENT", "name": "Entertainment"},
    {"code": "TRAVEL", "name": "Travel"},
    {"code": "FEES", "name": "Fees"},
    {"code": "TRANSFERS", "name": "Transfers"},
    {"code": "MISC", "name": "Miscellaneous"},
]

CATEGORY_KEYWORDS = {
    "Income": ["PAYROLL", "DIRECT DEP", "DIRECTDEP", "SALARY", "INTEREST PAYMENT", "DIVIDEND"],
    "Groceries": ["WHOLE FOODS", "TRADER JOE", "ALDI", "PUBLIX", "KROGER", "SAFEWAY", "COSTCO", "WALMART", "TARGET"],
    "Dining Out": ["STARBUCKS", "DUNKIN", "MCDONALD", "CHIPOTLE", "DOORDASH", "UBER EATS", "GRUBHUB", "RESTAURANT", "CAFE"],
    "Transportation": ["SHELL", "CHEVRON", "EXXONMOBIL", "BP#", "CIRCLE K", "GAS", "UBER", "LYFT", "PARKING", "TOLL"],
    "Utilities": ["ELECTRIC", "POWER", "WATER", "UTILIT", "COMCAST", "XFINITY", "VERIZON", "AT&T", "T-MOBILE", "INTERNET"],
    "Housing": ["RENT", "MORTGAGE", "HOA", "PROPERTY MGMT"],
    "Subscriptions": ["NETFLIX", "SPOTIFY", "HULU", "DISNEY+", "YOUTUBE", "APPLE.COM/BILL", "ADOBE", "OPENAI", "PELOTON", "PATREON"],
    "Shopping": ["AMAZON", "AMZN", "BEST BUY", "ETSY", "EBAY", "IKEA", "HOME DEPOT", "LOWE'S"],
    "Health": ["CVS", "WALGREENS", "PHARMACY", "DENTAL", "CLINIC", "HOSPITAL", "RX"],
    "Entertainment": ["AMC", "CINEMA", "TICKETMASTER", "STEAM", "XBOX", "PLAYSTATION", "NINTENDO"],
    "Travel": ["AIRLINE", "DELTA", "UNITED", "SOUTHWEST", "MARRIOTT", "HILTON", "AIRBNB", "EXPEDIA"],
    "Fees": ["FEE", "OVERDRAFT", "INTEREST CHARGE", "LATE CHARGE"],
}

RETURN_KEYWORDS = ["RETURN", "REFUND", "REVERSAL"]

STRICT_BOUNDARY_KEYWORDS = ["GAS", "AMC", "RX", "FEE", "RENT", "UBER"]

TRANSFER_KEYWORDS = [
    "INTERNAL TRANSFER",
    "ACH TRANSFER",
    "ONLINE TRANSFER",
    "TRANSFER",
    "ZELLE",
    "VENMO",
]

SUSPICIOUS_MERCHANT_PATTERNS = ["unknown", "suspicious", "test", "foreign", "crypto"]
