"""
Edit engine behind the edit_file tool.

Exact phase: replace the first occurrence of `old` only.
Fuzzy phase (exact failed): slide a window of len(old lines) over the file,
score each window by trimmed-line equality, keep the first best window and
accept it at FUZZY_THRESHOLD percent or more.
Nothing here touches the filesystem.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

FUZZY_THRESHOLD = 60

EXACT = "exact"
FUZZY = "fuzzy"
NOT_FOUND = "not_found"
BELOW_THRESHOLD = "below_threshold"


@dataclass
class FuzzyMatch:
    start: int
    end: int
    score: int


@dataclass
class EditOutcome:
    status: str
    content: Optional[str] = None
    score: int = 0
    # character span that was replaced
    start: int = 0
    end: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (EXACT, FUZZY)

    @property
    def fuzzy(self) -> bool:
        return self.status == FUZZY


def _split_lines(text: str) -> List[str]:
    """Split on "\\n" keeping any "\\r"; a trailing newline does not start a new line."""
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return parts


def replace_first(content: str, old: str, new: str) -> Optional[str]:
    if not old:
        return None
    pos = content.find(old)
    if pos < 0:
        return None
    return content[:pos] + new + content[pos + len(old):]


def line_similarity(a: str, b: str) -> int:
    """Percent (0-100) of positionally equal lines, compared after trimming."""
    return _score(_split_lines(a), _split_lines(b))


def _score(a_lines: List[str], b_lines: List[str]) -> int:
    longest = max(len(a_lines), len(b_lines))
    if longest == 0:
        return 100
    matching = sum(1 for x, y in zip(a_lines, b_lines) if x.strip() == y.strip())
    return matching * 100 // longest


def _best_window(haystack_lines: List[str], needle_lines: List[str]) -> tuple[int, int]:
    window = len(needle_lines)
    best_score = 0
    best_start = 0
    for i in range(len(haystack_lines) - window + 1):
        score = _score(needle_lines, haystack_lines[i:i + window])
        # strictly greater: the earliest of equally good windows wins
        if score > best_score:
            best_score = score
            best_start = i
    return best_start, best_score


def fuzzy_find(haystack: str, needle: str) -> Optional[FuzzyMatch]:
    """Locate the best window for `needle`; None if nothing reaches the threshold."""
    match = _fuzzy_scan(haystack, needle)
    if match is None or match.score < FUZZY_THRESHOLD:
        return None
    return match


def _fuzzy_scan(haystack: str, needle: str) -> Optional[FuzzyMatch]:
    needle_lines = _split_lines(needle)
    haystack_lines = _split_lines(haystack)
    if not needle_lines or not haystack_lines or len(needle_lines) > len(haystack_lines):
        return None

    best_start, best_score = _best_window(haystack_lines, needle_lines)

    start = sum(len(line) + 1 for line in haystack_lines[:best_start])
    end = start + sum(len(line) + 1 for line in haystack_lines[best_start:best_start + len(needle_lines)])
    # the window's final line break belongs to the span only if the needle ends with one
    if not needle.endswith("\n"):
        end -= 1
        if end > start and haystack[end - 1] == "\r" and not needle.endswith("\r"):
            end -= 1
    return FuzzyMatch(start=start, end=min(end, len(haystack)), score=best_score)


def apply_edit(content: str, old: str, new: str) -> EditOutcome:
    replaced = replace_first(content, old, new)
    if replaced is not None:
        pos = content.find(old)
        return EditOutcome(EXACT, replaced, 100, pos, pos + len(old))

    match = _fuzzy_scan(content, old)
    if match is None or match.score == 0:
        return EditOutcome(NOT_FOUND)
    if match.score < FUZZY_THRESHOLD:
        return EditOutcome(BELOW_THRESHOLD, score=match.score)
    updated = content[:match.start] + new + content[match.end:]
    return EditOutcome(FUZZY, updated, match.score, match.start, match.end)
