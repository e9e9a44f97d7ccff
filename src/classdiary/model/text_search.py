"""Search student names without worrying about accents or case.

Typing "joao" finds "João" and "JOSÉ" matches "jose". Only vowel accents
are folded, so "c" does not match "ç".
"""

import re

ACCENT_GROUPS: dict[str, str] = {
    "a": "aáàâã",
    "e": "eéèêẽ",
    "i": "iíìîĩ",
    "o": "oóòôõ",
    "u": "uúùûũ",
}

_VARIANT_TO_BASE = {
    variant: base for base, variants in ACCENT_GROUPS.items() for variant in variants
}


def _accent_aware_pattern(query: str) -> re.Pattern:
    """Regular expression that matches the query with any vowel accents."""
    parts = []
    for char in query:
        base = _VARIANT_TO_BASE.get(char.lower())
        if base is None:
            parts.append(re.escape(char))
        else:
            parts.append(f"[{ACCENT_GROUPS[base]}]")
    return re.compile("".join(parts), re.IGNORECASE)


def matches_accent_aware(value: str, query: str) -> bool:
    """True if query occurs in value, ignoring case and vowel accents.

    A blank query matches everything.
    """
    query = query.strip()
    if not query:
        return True
    return _accent_aware_pattern(query).search(value) is not None
