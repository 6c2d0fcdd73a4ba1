"""
Vocab Tutor — Hint Picker
Deterministic: same missing list in, same hint out. No history, no randomness.
"""

from typing import Optional

# Connectors are nudged first, in this order.
HINT_PRIORITY = ["because", "however", "recommend"]

HINT_TEMPLATES = {
    "because": 'Try: "... because ..."',
    "however": 'Try: "I liked it. However, ..."',
    "recommend": 'Try: "I recommend ..."',
}


def _priority(word: str) -> int:
    key = word.strip().lower()
    return HINT_PRIORITY.index(key) if key in HINT_PRIORITY else len(HINT_PRIORITY)


def pick(missing: list[str]) -> Optional[str]:
    """Hint for the highest-priority missing item, or None if nothing is missing."""
    if not missing:
        return None

    # min() keeps the first of equal keys, so ties go to encounter order
    chosen = min(missing, key=_priority)
    return HINT_TEMPLATES.get(chosen.strip().lower(), f"Try to use: {chosen}")
