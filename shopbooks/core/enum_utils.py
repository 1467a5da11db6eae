"""
Enum helpers for VARCHAR-based status fields.

STORAGE RULES:
━━━━━━━━━━━━━━
• Database: VARCHAR, never a native ENUM type
• SQLAlchemy: String(n) with Mapped[str]
• Values stored in UPPERCASE (e.g. "PARTIAL", "SALES_ORDER")
• Python code compares against Enum .value constants

INPUT NORMALIZATION:
━━━━━━━━━━━━━━━━━━━━
API payloads arrive in lower/kebab case ("with-tax", "bank_transfer",
"partial"). normalize_enum_input() maps them, plus any known aliases, onto
the stored UPPERCASE value.
"""

from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(PaymentStatus.PAID)
        'PAID'
        >>> get_enum_value("PAID")
        'PAID'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def normalize_enum_input(
    value: Any,
    enum_class: Type[T],
    aliases: Optional[Mapping[str, T]] = None,
) -> Optional[T]:
    """
    Resolve user input to an enum member, case- and separator-insensitively.

    "with-tax", "With Tax" and "WITH_TAX" all normalize to the key
    "WITH_TAX", which is looked up in `aliases` first and then against the
    enum values.

    Returns:
        The enum member, or None when nothing matches.
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value

    key = str(value).strip().upper().replace("-", "_").replace(" ", "_")
    if aliases and key in aliases:
        return aliases[key]
    try:
        return enum_class(key)
    except ValueError:
        return None
