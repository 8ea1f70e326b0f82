import os

# Hard ceiling on rows materialized by one spreadsheet table read.
MAX_TABLE_ROWS_CAP = 1000

DEFAULT_MAX_NESTING_DEPTH = 200


def get_max_nesting_depth() -> int:
    raw = os.getenv("CONFIG_LINK_MAX_DEPTH")
    if not raw:
        return DEFAULT_MAX_NESTING_DEPTH
    try:
        depth = int(raw)
    except ValueError:
        raise ValueError(f"CONFIG_LINK_MAX_DEPTH must be an integer, got {raw!r}") from None
    return max(1, depth)


def get_log_level() -> str:
    return os.getenv("CONFIG_LINK_LOG_LEVEL", "WARNING").upper()
