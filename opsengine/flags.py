"""Flag store checks for operation gating.

Flags are a per-player ``key -> str | bool`` map. Authoring tools store flag
values as strings, so comparisons coerce booleans to "true"/"false" before
matching. A flag is "present" when the key exists and its value is not False.
"""

from typing import Any, Dict, List, Optional

from .model import FlagCondition, FlagValue, OperationRequirements


def coerce_flag_value(value: Any) -> str:
    """Normalize a flag value to its comparable string form."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def is_present(flags: Dict[str, FlagValue], key: str) -> bool:
    if key not in flags:
        return False
    value = flags[key]
    return value is not False and value is not None


def flag_matches(flags: Dict[str, FlagValue], key: str, expected: Optional[FlagValue] = None) -> bool:
    """Check a single flag.

    Args:
        flags: Player flag map
        key: Flag key to look up
        expected: Required value, or None to only require presence

    Returns:
        True if the flag is present and, when given, equal to ``expected``
    """
    if not is_present(flags, key):
        return False
    if expected is None:
        return True
    return coerce_flag_value(flags[key]) == coerce_flag_value(expected)


def check(condition: FlagCondition, flags: Dict[str, FlagValue]) -> bool:
    return flag_matches(flags, condition.key, condition.value)


def check_all(conditions: List[FlagCondition], flags: Dict[str, FlagValue]) -> bool:
    return all(check(condition, flags) for condition in conditions)


def check_any(conditions: List[FlagCondition], flags: Dict[str, FlagValue]) -> bool:
    return any(check(condition, flags) for condition in conditions)


def requirements_met(requirements: OperationRequirements, flags: Dict[str, FlagValue], completed_ids) -> bool:
    """Check an operation's activation requirements against player state.

    Args:
        requirements: Requirements block of the operation
        flags: Player flag map
        completed_ids: Collection of completed operation ids

    Returns:
        True if all required flags match, all required operations are
        completed and no blocking flag matches
    """
    if not check_all(requirements.required_flags, flags):
        return False
    if any(op_id not in completed_ids for op_id in requirements.required_operations):
        return False
    return not check_any(requirements.blocked_by_flags, flags)
