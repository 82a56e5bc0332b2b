"""Centralized constants for the increading engine.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Time ----------
MS_PER_DAY = 86_400_000
DEFAULT_ROLLOVER_HOURS = 4

# ---------- Text item intervals ----------
BASE_MULTIPLIER = 1.01
MULTIPLIER_STEP = 0.015
TEXT_BASE_REVIEW_INTERVAL = MS_PER_DAY  # ms, used when an item has no review history
SNIPPET_FIRST_REVIEW_DELAY = MS_PER_DAY  # ms after creation

# ---------- Priority (stored x10) ----------
MIN_PRIORITY = 10
MAX_PRIORITY = 50
DEFAULT_PRIORITY = 25

# ---------- Queue ----------
DEFAULT_QUEUE_LIMIT = 50

# ---------- Vault layout ----------
SNIPPET_DIRECTORY = "increading/snippets"
ARTICLE_DIRECTORY = "increading/articles"
CARD_DIRECTORY = "increading/cards"
SNIPPET_TAG = "il-text-snippet"
ARTICLE_TAG = "il-article"
CARD_TAG = "il-card"
SOURCE_PROPERTY_NAME = "source"

# ---------- Titles ----------
CONTENT_TITLE_SLICE_LENGTH = 50
SNIPPET_SLICE_LENGTH = 30
FORBIDDEN_TITLE_CHARS = frozenset('*"\\/<>:|?#^[]')
GENERATED_ID_LENGTH = 5

# ---------- Cards ----------
CLOZE_DELIMITER_PATTERN = r"\{\{(.+?)\}\}"
CARD_ANSWER_REPLACEMENT = "[...]"

# ---------- Storage ----------
DATABASE_FILE_NAME = "increading.sqlite"
DATA_DIR_NAME = ".increading"
