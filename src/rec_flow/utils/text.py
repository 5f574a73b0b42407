"""Text helpers shared by the verifier and the scorer."""

import re
from collections import Counter
from typing import List, Set

from ..models import normalize_title

_WORD_RE = re.compile(r"\w+")

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for with by about as into like through after
    over between out against during without before under around among is are was
    were be been being have has had do does did will would shall should can could
    may might must of from then than that this these those it its they them their
    he him his she her hers we us our you your yours
    """.split()
)


def tokenize(text: str, min_length: int = 4) -> Set[str]:
    """Lowercase word tokens of at least ``min_length`` characters."""
    if not text:
        return set()
    return {t for t in _WORD_RE.findall(text.lower()) if len(t) >= min_length}


def extract_keywords(text: str, limit: int = 20) -> List[str]:
    """Most frequent non-stop-word tokens longer than three characters."""
    if not text:
        return []
    words = [w for w in _WORD_RE.findall(text.lower()) if len(w) > 3 and w not in STOP_WORDS]
    # Counter.most_common keeps first-seen order among equal counts
    return [word for word, _ in Counter(words).most_common(limit)]


def levenshtein(a: str, b: str) -> int:
    """Classic two-row edit distance."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def title_distance(a: str, b: str) -> float:
    """Edit distance between normalized titles, scaled to [0, 1]."""
    na, nb = normalize_title(a), normalize_title(b)
    longest = max(len(na), len(nb))
    if longest == 0:
        return 0.0
    return levenshtein(na, nb) / longest


def title_similarity(a: str, b: str) -> float:
    """1.0 for equal titles, 0.9 when one contains the other, else word Jaccard."""
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    if na in nb or nb in na:
        return 0.9

    words_a, words_b = set(na.split()), set(nb.split())
    union = words_a | words_b
    return len(words_a & words_b) / len(union) if union else 0.0
