"""
Vocab Tutor — Vocabulary Coverage

Splits an assignment's vocabulary into what the student has already used and
what is still missing.

- Single words match against the token set of the normalized text.
- Phrases (anything with a space) match as a whole, padded with spaces on
  both sides, so "wake up" never matches inside "awaken upper".

Callers pass the whole student corpus of a session, not the latest message.
"""

import re
from typing import Tuple

_NON_WORD = re.compile(r"[^a-z0-9']+")


def normalize(text: str) -> str:
    """Lowercase, turn every run of non [a-z0-9'] characters into one space, trim."""
    return _NON_WORD.sub(" ", (text or "").lower()).strip()


def tokenize(normalized: str) -> set[str]:
    return {t for t in _NON_WORD.split(normalized) if t}


def compute(text: str, vocab: list[str]) -> Tuple[list[str], list[str]]:
    """
    Return (used, missing), both in vocab order.

    Duplicate entries are classified one by one; a single match anywhere in
    the text satisfies every occurrence of that term.
    """
    normalized = normalize(text)
    tokens = tokenize(normalized)
    haystack = f" {normalized} "

    def matches(item: str) -> bool:
        item = item.strip()
        if " " in item:
            phrase = normalize(item)
            return bool(phrase) and f" {phrase} " in haystack
        word = normalize(item)
        return bool(word) and word in tokens

    used = [v for v in vocab if matches(v)]
    used_keys = {u.strip().lower() for u in used}
    missing = [v for v in vocab if v.strip().lower() not in used_keys]
    return used, missing
