"""Pattern tables for intent parsing.

All regular expressions used by the intent parser live here as data and are
compiled once at import time. Tables are ordered: the parser walks them
top-to-bottom and the first match wins, so table order is the tie-breaker.
"""

import re

_I = re.IGNORECASE


def _compile(patterns: list[str], flags: int = _I) -> list[re.Pattern]:
    return [re.compile(p, flags) for p in patterns]


# (entity, patterns) in priority order. Sub-accounts precede accounts so
# "sub-account details" is not claimed by the "account details" pattern.
ENTITY_PATTERNS: list[tuple[str, list[re.Pattern]]] = [
    ("contacts", _compile([
        r"how many contacts",
        r"list contacts",
        r"show contacts",
        r"contacts for",
        r"contacts under",
        r"contacts in",
        r"contact list",
        r"all contacts",
        r"number of contacts",
        r"contacts count",
        r"who are the contacts",
        r"get contacts",
        r"find contacts",
        r"what contacts",
        r"tell me about contacts",
        r"my contacts",
        r"contact details",
        r"contact information",
        r"contacts? (?:starting|that start|beginning|that begin) with",
        r"^contacts?$",
    ])),
    ("subaccounts", _compile([
        r"how many sub.?accounts",
        r"list sub.?accounts",
        r"show sub.?accounts",
        r"sub.?accounts for",
        r"sub.?accounts under",
        r"all sub.?accounts",
        r"sub.?account list",
        r"number of sub.?accounts",
        r"which sub.?accounts",
        r"get sub.?accounts",
        r"find sub.?accounts",
        r"what sub.?accounts",
        r"tell me about sub.?accounts",
        r"my sub.?accounts",
        r"sub.?account details",
        r"^sub.?accounts?$",
    ])),
    ("accounts", _compile([
        r"how many accounts",
        r"list accounts",
        r"show accounts",
        r"all accounts",
        r"account list",
        r"accounts for",
        r"number of accounts",
        r"which accounts",
        r"get accounts",
        r"find accounts",
        r"accounts with",
        r"what accounts",
        r"tell me about accounts",
        r"my accounts",
        r"account details",
        r"^accounts?$",
    ])),
    ("followups", _compile([
        r"how many follow.?ups",
        r"list follow.?ups",
        r"show follow.?ups",
        r"follow.?ups due",
        r"pending follow.?ups",
        r"upcoming follow.?ups",
        r"follow.?up list",
        r"all follow.?ups",
        r"overdue follow.?ups",
        r"today.?s follow.?ups",
        r"follow.?ups for today",
        r"what follow.?ups",
        r"tell me about follow.?ups",
        r"my follow.?ups",
        r"follow.?up details",
        r"^follow.?ups?$",
    ])),
    ("activities", _compile([
        r"how many activities",
        r"list activities",
        r"show activities",
        r"recent activities",
        r"activity log",
        r"activity history",
        r"activities for",
        r"what activities",
        r"activities this week",
        r"activities today",
        r"tell me about activities",
        r"my activities",
        r"activity details",
        r"^activit(?:y|ies)$",
    ])),
    ("quotations", _compile([
        r"how many quotations",
        r"list quotations",
        r"show quotations",
        r"quotation value",
        r"total quotations",
        r"pipeline value",
        r"total pipeline",
        r"quotations for",
        r"quotes for",
        r"quote value",
        r"what quotations",
        r"tell me about quotations",
        r"my quotations",
        r"quotation details",
        r"^quotations?$",
        r"^quotes?$",
    ])),
    ("leads", _compile([
        r"how many leads",
        r"list leads",
        r"show leads",
        r"active leads",
        r"lead status",
        r"leads for",
        r"open leads",
        r"new leads",
        r"what leads",
        r"tell me about leads",
        r"my leads",
        r"lead details",
        r"^leads?$",
    ])),
    ("metrics", _compile([
        r"engagement score",
        r"average score",
        r"performance",
        r"total value",
        r"conversion rate",
        r"activity breakdown",
        r"what is my",
        r"my metrics",
        r"my performance",
        r"my stats",
        r"statistics",
    ])),
]

# Whole-word entity nouns, consulted only when no phrase pattern matched.
ENTITY_KEYWORDS: list[tuple[str, re.Pattern]] = [
    ("subaccounts", re.compile(r"\bsub[\s-]?accounts?\b", _I)),
    ("followups", re.compile(r"\bfollow[\s-]?ups?\b", _I)),
    ("contacts", re.compile(r"\bcontacts?\b", _I)),
    ("accounts", re.compile(r"\baccounts?\b", _I)),
    ("activities", re.compile(r"\bactivit(?:y|ies)\b", _I)),
    ("quotations", re.compile(r"\b(?:quotations?|quotes?)\b", _I)),
    ("leads", re.compile(r"\bleads?\b", _I)),
]

# "What does Acme Corp have?" with no entity noun asks about sub-accounts.
OWNERSHIP_PATTERN = re.compile(r"\bdoes\s+.+\s+have\b", _I)

# First matching operation wins; "list" when nothing matches.
OPERATION_PATTERNS: list[tuple[str, list[re.Pattern]]] = [
    ("count", _compile([
        r"how many",
        r"\bcount\b",
        r"number of",
        r"\btotal\s+(?:number|count)\b",
        r"are there\s+\d+",
        r"there are\s+\d+",
        r"only\s+\d+",
    ])),
    ("list", _compile([
        r"\blist\b",
        r"\bshow\b",
        r"\bget\b",
        r"\bfind\b",
        r"\bwhich\b",
        r"who are",
    ])),
    ("aggregate", _compile([
        r"\baverage\b",
        r"\bsum\b",
        r"\bpipeline\b",
        r"\bvalue\b",
        r"\btotal\b",
    ])),
    ("search", _compile([
        r"\bsearch\b",
        r"look for",
    ])),
    ("get", _compile([
        r"what is",
        r"what's",
        r"tell me about",
        r"\bdetails\b",
        r"\binfo\b",
    ])),
]

STOP_WORDS: frozenset[str] = frozenset({
    "the", "this", "that", "my", "your", "our", "all", "any", "some",
    "today", "week", "month", "year", "specific", "a specific", "particular",
    "general", "in general", "total", "each", "every", "which", "what",
    "how", "when", "where", "who", "whom", "whose", "why", "me", "us",
    "them", "you", "him", "her", "it", "one", "two", "three", "example",
    "instance", "type", "types", "kind", "kinds", "none", "no one", "nobody",
    "i", "we", "details", "list", "last", "next", "do", "does", "did", "can",
    "could", "should", "show", "get", "find", "give", "tell", "there",
    "employee", "employees", "account", "accounts", "contact", "contacts",
    "team", "everyone", "she", "they",
})

# Phrasing that asks for everything; disables name capture.
GENERAL_SCOPE_PATTERN = re.compile(
    r"\b(?:total|all|in general|overall|every|entire|whole|not for a specific|"
    r"not for any specific|no specific|without filter|everything)\b",
    _I,
)

# Sub-account / generic owner names. Tried in order, first accepted capture wins.
SUBACCOUNT_NAME_PATTERNS: list[re.Pattern] = [
    # Capitalised multi-word names: "for Acme Corp", "under Sales_Shweta"
    re.compile(
        r"(?<!not\s)(?<!no\s)\b(?:for|under|of)\s+[\"']?"
        r"([A-Z][\w\-.&]*(?:\s+[A-Z][\w\-.&]*)*)[\"']?"
    ),
    re.compile(
        r"(?<!not\s)(?<!no\s)\b(?:for|under|of)\s+[\"']?([A-Z][\w\s\-.]{2,40}?)[\"']?(?:\s|$|\?|,)",
        _I,
    ),
    re.compile(r"\bdoes\s+[\"']?([A-Z][\w\s\-.]{2,40}?)[\"']?\s+have\b", _I),
    re.compile(r"[\"']?([A-Z][\w\s\-.]{2,40}?)[\"']?\s+(?:has|have)\s+(?:how many|contacts|sub)", _I),
    re.compile(r"\bsub[\s-]?account\s+[\"']?([A-Z][\w\s\-.]{2,40}?)[\"']?(?:\s|$|\?|,)", _I),
]

ACCOUNT_NAME_PATTERNS: list[re.Pattern] = [
    re.compile(r"(?<![\w-])(?<!sub )[Aa]ccount\s+[\"']?([A-Z][\w\-.&]*(?:\s+[A-Z][\w\-.&]*)*)[\"']?"),
    re.compile(r"\b(?:company|organization)\s+[\"']?([A-Za-z][\w\-.&]*(?:\s+[A-Z][\w\-.&]*)*)[\"']?", _I),
]

EMPLOYEE_NAME_PATTERNS: list[re.Pattern] = [
    re.compile(r"\b(?:assigned to|for employee|employee)\s+[\"']?([A-Za-z][\w\-.]+)[\"']?", _I),
]

CONTACT_NAME_PATTERNS: list[re.Pattern] = [
    re.compile(r"\bcontact\s+(?:named|called)\s+[\"']?([A-Za-z][\w\s\-.]{1,40}?)[\"']?(?:\s|$|\?|,)", _I),
]

NAME_PREFIX_PATTERN = re.compile(
    r"(?:starting with|that start with|begins? with|beginning with)\s+[\"']?([a-z0-9]+)[\"']?",
    _I,
)

LAST_N_DAYS_PATTERN = re.compile(r"(?:in\s+)?(?:the\s+)?last\s+(\d+)\s+days?", _I)
TODAY_PATTERN = re.compile(r"\btoday", _I)
THIS_WEEK_PATTERN = re.compile(r"\bthis week\b", _I)
THIS_MONTH_PATTERN = re.compile(r"\bthis month\b", _I)

STATUS_PATTERN = re.compile(r"\b(?:status|state)\s*[:=]\s*[\"']?(\w+)[\"']?", _I)

INSIGHT_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("silent", re.compile(r"\b(?:silent|inactive|gone quiet|no recent activity|dormant)\b", _I)),
    ("slipping", re.compile(r"\b(?:slipping|declining|low engagement|at risk)\b", _I)),
]
