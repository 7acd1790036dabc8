# bookchapters/phrase_linker.py

import logging
import re
from bisect import bisect_left, bisect_right
from typing import List, Optional, Sequence, Tuple

from .chapter_list import ChapterCandidate
from .utils.markup import end_tag, start_tag

logger = logging.getLogger(__name__)

# ---------------------------- regex & constants ----------------------------

_HTML_TAG_RE = re.compile(r"<[^>]+>")  # single tags
_HTML_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
# Character references; a link may wrap one whole but never cut into it
_HTML_ENTITY_RE = re.compile(r"&(?:#\d+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")

# Elements whose whole body is off limits (existing links included)
_IGNORED_BLOCK_RES = [
    re.compile(r"<a\b[^>]*>[\s\S]*?</a\s*>", re.IGNORECASE),
    re.compile(r"<head\b[^>]*>[\s\S]*?</head\s*>", re.IGNORECASE),
    re.compile(r"<nolink\b[^>]*>[\s\S]*?</nolink\s*>", re.IGNORECASE),
    re.compile(
        r"<span\b[^>]*?\bclass\s*=\s*([\"'])(?:(?!\1).)*?\bnolink\b(?:(?!\1).)*?\1[^>]*>[\s\S]*?</span\s*>",
        re.IGNORECASE,
    ),
    re.compile(r"<textarea\b[^>]*>[\s\S]*?</textarea\s*>", re.IGNORECASE),
    re.compile(r"<select\b[^>]*>[\s\S]*?</select\s*>", re.IGNORECASE),
    re.compile(r"<script\b[^>]*>[\s\S]*?</script\s*>", re.IGNORECASE),
    re.compile(r"<style\b[^>]*>[\s\S]*?</style\s*>", re.IGNORECASE),
]

Span = Tuple[int, int]

# ---------------------------- span helpers ---------------------------------

def _merge_spans(spans: List[Span]) -> List[Span]:
    """Merge overlapping/adjacent spans."""
    if not spans:
        return []
    spans = sorted(spans)
    merged = [spans[0]]
    for a, b in spans[1:]:
        la, lb = merged[-1]
        if a <= lb:  # overlap/adjacent
            merged[-1] = (la, max(lb, b))
        else:
            merged.append((a, b))
    return merged


def protected_spans(text: str) -> List[Span]:
    """All regions a link may not touch: comments, tags, and ignored element bodies."""
    spans: List[Span] = []
    spans.extend(m.span() for m in _HTML_COMMENT_RE.finditer(text or ""))
    for rx in _IGNORED_BLOCK_RES:
        spans.extend(m.span() for m in rx.finditer(text or ""))
    spans.extend(m.span() for m in _HTML_TAG_RE.finditer(text or ""))
    return _merge_spans(spans)


def entity_spans(text: str) -> List[Span]:
    return [m.span() for m in _HTML_ENTITY_RE.finditer(text or "")]


def _cuts_entity(start: int, end: int, entities: List[Span], starts: List[int]) -> bool:
    """True if either end of [start, end) falls strictly inside an entity."""
    for pos in (start, end):
        i = bisect_left(starts, pos) - 1
        if i >= 0 and entities[i][1] > pos:
            return True
    return False


def _blocking_span(start: int, end: int, spans: List[Span], ends: List[int]) -> Optional[Span]:
    """Return the protected span overlapping [start, end), if any."""
    i = bisect_right(ends, start)
    if i < len(spans) and spans[i][0] < end:
        return spans[i]
    return None


# ---------------------------- matching ---------------------------------------

def compile_phrase(phrase: str, *, case_sensitive: bool = True, whole_words: bool = False) -> re.Pattern:
    """Literal pattern for `phrase`; regex metacharacters in titles mean nothing."""
    body = re.escape(phrase)
    if whole_words:
        if re.match(r"\w", phrase[:1]):
            body = r"(?<!\w)" + body
        if re.match(r"\w", phrase[-1:]):
            body = body + r"(?!\w)"
    return re.compile(body, 0 if case_sensitive else re.IGNORECASE)


def find_unprotected(
    text: str, pattern: re.Pattern, spans: List[Span], entities: Optional[List[Span]] = None
) -> Optional[re.Match]:
    """First match of `pattern` lying outside `spans` that does not cut into an entity."""
    ends = [b for _, b in spans]
    if entities is None:
        entities = entity_spans(text)
    starts = [a for a, _ in entities]
    pos = 0
    while pos <= len(text):
        m = pattern.search(text, pos)
        if m is None:
            return None
        blocker = _blocking_span(m.start(), m.end(), spans, ends)
        if blocker is None:
            if not _cuts_entity(m.start(), m.end(), entities, starts):
                return m
            pos = m.start() + 1
            continue
        # Any later match starting before the blocker's end overlaps it too.
        pos = max(blocker[1], m.start() + 1)
    return None


# ------------------------------ main API ------------------------------------

def apply_links_with_count(
    text: str,
    candidates: Sequence[ChapterCandidate],
    *,
    css_class: str = "autolink",
    case_sensitive: bool = True,
    whole_words: bool = False,
) -> Tuple[str, int]:
    """
    Wrap the first unprotected occurrence of each candidate's match key in a link.

    Candidates are applied in the given order, each against the text as left
    by the previous ones; callers pass them longest first so a long title is
    claimed before a shorter title contained in it. Inserted links are <a>
    elements and so become protected for everything that follows, which also
    makes a second pass over the output a no-op.

    Returns (new_text, number_of_links_added).
    """
    if not text or not candidates:
        return text, 0

    spans = protected_spans(text)
    entities = entity_spans(text)
    linked = 0
    for cand in candidates:
        key = cand.match_key
        if not key:
            continue
        if case_sensitive and key not in text:
            continue

        m = find_unprotected(text, compile_phrase(key, case_sensitive=case_sensitive, whole_words=whole_words), spans, entities)
        if m is None:
            continue

        opening = start_tag("a", {"class": css_class, "title": cand.title, "href": cand.url})
        text = text[:m.start()] + opening + m.group(0) + end_tag("a") + text[m.end():]
        spans = protected_spans(text)
        entities = entity_spans(text)
        linked += 1
        logger.debug(f"Linked {key!r} -> {cand.url}")

    return text, linked


def apply_links(text: str, candidates: Sequence[ChapterCandidate], **options) -> str:
    """Same as apply_links_with_count, text only."""
    return apply_links_with_count(text, candidates, **options)[0]
