"""Cheap lexical signals used before any LLM call.

- normalize_text(): lowercase, strip punctuation (keeping digits, so phone
  numbers and hours still differ), collapse whitespace
- text_similarity(): MinHash estimate of the Jaccard similarity of the two
  texts' ordered word shingles (datasketch); identical normalized text is
  exactly 1.0. Shingles keep word order, so "closed Monday, open Sunday" and
  "open Monday, closed Sunday" do not look alike
- is_near_duplicate(): the duplicate test. The numbers in both texts must
  match in sequence (a changed phone number or opening hour is a new fact no
  matter how long the surrounding text is), then the shingle similarity must
  reach the threshold
- update_markers(): words that signal a fact is being changed rather than
  restated ("updated", "new", "changed", "moved", ...)
- derive_topic(): a short label for a conflict group
"""

from __future__ import annotations

import re

from datasketch import MinHash

_PUNCT_RE = re.compile(r"[^\w\s]", flags=re.UNICODE)
_SPACE_RE = re.compile(r"\s+")
_DIGITS_RE = re.compile(r"\d+")

# Words per shingle for text_similarity()
SHINGLE_SIZE = 3

UPDATE_MARKERS: tuple[str, ...] = (
    "updated",
    "update",
    "new",
    "changed",
    "change",
    "moved",
    "relocated",
    "now",
    "no longer",
)

_STOPWORDS = frozenset(
    "a an and are at be by for from in is it of on or our the to we with your".split()
)


def normalize_text(text: str) -> str:
    lowered = _PUNCT_RE.sub(" ", text.lower())
    return _SPACE_RE.sub(" ", lowered).strip()


def shingles(text: str, size: int = SHINGLE_SIZE) -> set[str]:
    """Overlapping runs of *size* words of normalized *text*.

    A text of at most *size* words is a single shingle.
    """
    tokens = normalize_text(text).split()
    if len(tokens) <= size:
        return {" ".join(tokens)} if tokens else set()
    return {" ".join(tokens[i:i + size]) for i in range(len(tokens) - size + 1)}


def digit_sequence(text: str) -> list[str]:
    return _DIGITS_RE.findall(normalize_text(text))


def minhash_for_text(text: str, num_perm: int = 128) -> MinHash:
    """MinHash signature over the word shingles of normalized *text*."""
    mh = MinHash(num_perm=num_perm)
    for shingle in shingles(text):
        mh.update(shingle.encode("utf-8"))
    return mh


def text_similarity(a: str, b: str, num_perm: int = 128) -> float:
    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if norm_a == norm_b:
        return 1.0
    if not norm_a or not norm_b:
        return 0.0
    return float(minhash_for_text(a, num_perm).jaccard(minhash_for_text(b, num_perm)))


def is_near_duplicate(a: str, b: str, threshold: float, num_perm: int = 128) -> bool:
    if normalize_text(a) == normalize_text(b):
        return True
    if digit_sequence(a) != digit_sequence(b):
        return False
    return text_similarity(a, b, num_perm) >= threshold


def update_markers(*texts: str) -> list[str]:
    """Update markers present as whole words (or phrases) in any of *texts*."""
    haystack = " " + " ".join(normalize_text(t) for t in texts if t) + " "
    return [m for m in UPDATE_MARKERS if f" {m} " in haystack]


def content_words(text: str) -> list[str]:
    return [
        w for w in normalize_text(text).split()
        if w not in _STOPWORDS and w not in UPDATE_MARKERS and not w.isdigit()
    ]


def derive_topic(texts: list[str], fallback_chars: int = 60) -> str:
    """Content words shared by every text, in the order of the first one.

    Falls back to the first *fallback_chars* characters of the first text when
    the texts share no content words.
    """
    if not texts:
        return ""
    shared = set(content_words(texts[0]))
    for text in texts[1:]:
        shared &= set(content_words(text))
    ordered: list[str] = []
    for word in content_words(texts[0]):
        if word in shared and word not in ordered:
            ordered.append(word)
    if ordered:
        return " ".join(ordered[:5])
    return texts[0][:fallback_chars]
