"""
Application settings management.
Uses python-dotenv to load environment variables from .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

# Store original environment values to prevent modification
_ENV_CACHE = {}


def get_setting(key: str, default=None):
    """
    Get a setting from environment variables.

    Returns a copy of the value to prevent accidental modification of the
    cached environment value.

    Args:
        key: Environment variable name
        default: Default value if not found

    Returns:
        The environment variable value or default

    Example:
        >>> DB_PATH = get_setting('LINKGRAPH_DB_PATH', 'data/linkgraph.db')
        >>> DEBUG = get_setting('DEBUG', 'False') == 'True'
    """
    if key not in _ENV_CACHE:
        _ENV_CACHE[key] = os.getenv(key, default)

    value = _ENV_CACHE[key]

    # For mutable types, return a copy
    if isinstance(value, (list, dict)):
        return value.copy()

    return value


# Debug mode
DEBUG = get_setting('DEBUG', 'False').lower() in ('true', '1', 'yes')

# Database path
DB_PATH = get_setting('LINKGRAPH_DB_PATH', 'data/linkgraph.db')

# Authority propagation (PageRank)
PAGERANK_DAMPING = float(get_setting('PAGERANK_DAMPING', '0.85'))
PAGERANK_MAX_ITERATIONS = int(get_setting('PAGERANK_MAX_ITERATIONS', '100'))
PAGERANK_TOLERANCE = float(get_setting('PAGERANK_TOLERANCE', '0.0001'))

# Link balance analysis
IMBALANCE_GOOD_THRESHOLD = float(get_setting('IMBALANCE_GOOD_THRESHOLD', '0.2'))
IMBALANCE_WARNING_THRESHOLD = float(get_setting('IMBALANCE_WARNING_THRESHOLD', '0.4'))
WEAKLY_CONNECTED_MIN_LINKS = int(get_setting('WEAKLY_CONNECTED_MIN_LINKS', '3'))

# Similarity-based internal linking
LINKING_MIN_SIMILARITY = float(get_setting('LINKING_MIN_SIMILARITY', '0.10'))
LINKING_MAX_NEW_LINKS = int(get_setting('LINKING_MAX_NEW_LINKS', '5'))
LINKING_MIN_OUTBOUND = int(get_setting('LINKING_MIN_OUTBOUND', '3'))
LINKING_TITLE_WEIGHT = int(get_setting('LINKING_TITLE_WEIGHT', '3'))
LINKING_HEADING_WEIGHT = int(get_setting('LINKING_HEADING_WEIGHT', '2'))
ANCHOR_MAX_LENGTH = int(get_setting('ANCHOR_MAX_LENGTH', '60'))

# External link verification
VERIFY_CONCURRENCY = int(get_setting('VERIFY_CONCURRENCY', '10'))
VERIFY_TIMEOUT = float(get_setting('VERIFY_TIMEOUT', '10'))
VERIFY_MAX_ATTEMPTS = int(get_setting('VERIFY_MAX_ATTEMPTS', '3'))
VERIFY_RETRY_DELAY = float(get_setting('VERIFY_RETRY_DELAY', '1.0'))
VERIFY_HOST_DELAY = float(get_setting('VERIFY_HOST_DELAY', '0.2'))
VERIFY_STALE_DAYS = int(get_setting('VERIFY_STALE_DAYS', '30'))
VERIFY_BROKEN_ALERT_PERCENT = float(get_setting('VERIFY_BROKEN_ALERT_PERCENT', '10'))
VERIFY_USER_AGENT = get_setting(
    'VERIFY_USER_AGENT',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
)

# Repair
REPAIR_MIN_TRUST = int(get_setting('REPAIR_MIN_TRUST', '50'))
# 0 means no limit; a positive value defers the remaining dead-ends to a later run
REPAIR_MAX_DEAD_ENDS = int(get_setting('REPAIR_MAX_DEAD_ENDS', '0'))
