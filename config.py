"""Central configuration for the operation engine.

All tunables live here (starting credits, ledger retention, acknowledgement
tokens, registry endpoint, ...). Every value has a sensible default and can be
overridden through environment variables.
"""
from __future__ import annotations
import os


def _get_int_env(name: str, default: int, minval: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        v = int(raw)
        if minval is not None and v < minval:
            return default
        return v
    except ValueError:
        return default


def _get_float_env(name: str, default: float, minval: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        v = float(raw)
        if minval is not None and v < minval:
            return default
        return v
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    val = raw.strip().lower()
    return val in {"1", "true", "yes", "on"}


# ---------------- Economy ----------------
# Opening balance of a freshly created player ledger
def get_starting_credits() -> int:
    """Opening ledger balance. Var: OPS_STARTING_CREDITS (default 0)."""
    return _get_int_env("OPS_STARTING_CREDITS", 0, minval=0)


def get_ledger_retention() -> int:
    """Max ledger entries kept per player. Var: OPS_LEDGER_RETENTION (default 500)."""
    return _get_int_env("OPS_LEDGER_RETENTION", 500, minval=1)


# ---------------- Operations ----------------
DEFAULT_ACK_TOKENS = ("ACK", "DONE")


def get_ack_tokens() -> tuple[str, ...]:
    """Accepted acknowledgement tokens, upper-cased. Var: OPS_ACK_TOKENS (comma separated)."""
    raw = os.getenv("OPS_ACK_TOKENS")
    if raw is None:
        return DEFAULT_ACK_TOKENS
    tokens = tuple(t.strip().upper() for t in raw.split(",") if t.strip())
    return tokens or DEFAULT_ACK_TOKENS


def get_session_flag() -> str:
    """Flag written once when a player opens their first session. Var: OPS_SESSION_FLAG."""
    return os.getenv("OPS_SESSION_FLAG", "session_opened").strip() or "session_opened"


def get_max_cascade_passes() -> int:
    """Guard on trigger re-evaluation passes. Var: OPS_MAX_CASCADE_PASSES (default 32)."""
    return _get_int_env("OPS_MAX_CASCADE_PASSES", 32, minval=2)


def get_system_handler() -> str:
    """Sender used by fallback narrative templates. Var: OPS_SYSTEM_HANDLER."""
    return os.getenv("OPS_SYSTEM_HANDLER", "SYSTEM").strip() or "SYSTEM"


# ---------------- Registry source ----------------

def get_registry_url() -> str | None:
    """Optional HTTP endpoint publishing operation records. Var: OPS_REGISTRY_URL."""
    raw = os.getenv("OPS_REGISTRY_URL")
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def get_http_timeout() -> float:
    """Timeout for registry HTTP requests in seconds. Var: OPS_HTTP_TIMEOUT (default 10.0)."""
    return _get_float_env("OPS_HTTP_TIMEOUT", 10.0, minval=1.0)


# ---------------- Storage & logging ----------------

def get_players_dir() -> str:
    """Directory of the JSON player store. Var: OPS_PLAYERS_DIR (default data/players)."""
    return os.getenv("OPS_PLAYERS_DIR", "data/players").strip() or "data/players"


def get_log_level() -> str:
    """Logging level name used by the bootstrap. Var: OPS_LOG_LEVEL (default WARNING)."""
    return os.getenv("OPS_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"


def get_strict_publish() -> bool:
    """Treat publish warnings as errors. Var: OPS_STRICT_PUBLISH (default False)."""
    return _get_bool_env("OPS_STRICT_PUBLISH", False)


__all__ = [
    # Economy
    "get_starting_credits", "get_ledger_retention",
    # Operations
    "DEFAULT_ACK_TOKENS", "get_ack_tokens", "get_session_flag",
    "get_max_cascade_passes", "get_system_handler",
    # Registry
    "get_registry_url", "get_http_timeout",
    # Storage & logging
    "get_players_dir", "get_log_level", "get_strict_publish",
]
