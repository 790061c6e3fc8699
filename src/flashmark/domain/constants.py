"""Centralized constants for flashmark.

All magic numbers and algorithm defaults live here so every layer
imports from a single source of truth.
"""

# ---------- SM-2 ----------
SM2_INITIAL_EASE = 2.5
SM2_MINIMUM_EASE = 1.3
SM2_EASY_BONUS = 1.3
SM2_HARD_MULTIPLIER = 1.2
SM2_GRADUATING_INTERVAL = 1.0  # days
SM2_EASY_INTERVAL = 4.0  # days
SM2_LAPSE_EASE_PENALTY = 0.2
SM2_EASE_STEP = 0.15

# ---------- FSRS ----------
FSRS_REQUEST_RETENTION = 0.9
FSRS_MAXIMUM_INTERVAL = 36500.0  # days
FSRS_MIN_STABILITY = 0.1
FSRS_MIN_DIFFICULTY = 1.0
FSRS_MAX_DIFFICULTY = 10.0
FSRS_SHORT_TERM_MIN_MINUTES = 10.0
FSRS_SHORT_TERM_MAX_MINUTES = 1440.0
# FSRS-4.5 weights. w0-w3 initial stability per rating, w4-w7 difficulty,
# w8-w10 recall stability, w11-w14 forget stability, w15 hard penalty,
# w16 easy bonus.
FSRS_DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.4, 0.6, 2.4, 5.8,
    4.93, 0.94, 0.86, 0.01,
    1.49, 0.14, 0.94,
    2.18, 0.05, 0.34, 1.26,
    0.29, 2.61,
)

# ---------- Matching ----------
DEFAULT_FUZZY_THRESHOLD = 0.8

# ---------- Settings defaults ----------
DEFAULT_NEW_CARDS_PER_DAY = 20
DEFAULT_REVIEWS_PER_DAY = 200
DEFAULT_DAILY_RESET_HOUR = 0

# ---------- Identity / Sync ----------
MAX_CARD_ID = 2**63 - 1
ORPHAN_PREVIEW_LEN = 50
MARKDOWN_SUFFIXES = (".md", ".markdown")

# ---------- HTTP ----------
REQUEST_TIMEOUT = 30.0
RESPONSIVENESS_TIMEOUT = 2.0

SECONDS_PER_DAY = 86400.0
