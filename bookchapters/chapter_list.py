# bookchapters/chapter_list.py

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .utils.markup import append_query_params, escape_text, strip_tags

logger = logging.getLogger(__name__)


class Variant(Enum):
    LITERAL = "literal"
    ENTITY = "entity"


_VARIANT_ORDER = {Variant.LITERAL: 0, Variant.ENTITY: 1}


@dataclass(frozen=True)
class ChapterCandidate:
    chapter_id: int
    match_key: str   # text searched for in the content
    title: str       # tag-stripped display title (escaped when rendered)
    url: str
    variant: Variant = Variant.LITERAL


CacheKey = Tuple[int, int]  # (course_id, user_id)


# ------------------------- Building --------------------------------------------

def _sort_key(c: ChapterCandidate):
    return (-len(c.match_key), c.chapter_id, _VARIANT_ORDER[c.variant])


def build_candidates(
    course_id: int,
    user_id: int,
    modules,
    chapters,
    *,
    module_type: str = "book",
    chapter_param: str = "chapterid",
    entity_variants: bool = True,
) -> List[ChapterCandidate]:
    """
    Collect linkable chapter titles for one course as seen by one user.

    `modules` provides list_visible_modules(course_id, user_id); `chapters`
    provides get_chapters(module_instance_id). Errors from either propagate.

    Only visible + accessible modules of `module_type` count, hidden chapters
    are skipped, and so are chapters whose title is empty once tags are
    stripped. Each chapter yields its trimmed title and, when escaping changes
    it, the escaped form too, so both "Cats & Dogs" and "Cats &amp; Dogs"
    in the content get linked.

    Result is ordered longest match key first; ties by chapter id, literal first.
    """
    out: List[ChapterCandidate] = []

    for module in modules.list_visible_modules(course_id, user_id):
        if module.type != module_type or not (module.visible and module.accessible):
            continue

        for chapter in chapters.get_chapters(module.instance_id):
            if chapter.hidden:
                continue

            title = strip_tags(chapter.title or "").strip()
            if not title:
                continue

            current = (chapter.title or "").strip()
            url = append_query_params(module.url, {chapter_param: chapter.id})
            out.append(ChapterCandidate(chapter.id, current, title, url, Variant.LITERAL))

            if entity_variants:
                escaped = escape_text(current)
                if escaped != current:
                    out.append(ChapterCandidate(chapter.id, escaped, title, url, Variant.ENTITY))

    out.sort(key=_sort_key)
    logger.debug("Built %d candidate(s) for course=%s user=%s", len(out), course_id, user_id)
    return out


def exclude_self(candidates: Sequence[ChapterCandidate], current_chapter_id: Optional[int]) -> List[ChapterCandidate]:
    """Drop every variant of the chapter whose page is being rendered."""
    if current_chapter_id is None:
        return list(candidates)
    return [c for c in candidates if c.chapter_id != current_chapter_id]


def dedupe_candidates(candidates: Sequence[ChapterCandidate]) -> List[ChapterCandidate]:
    """First candidate per match key wins; order is kept."""
    seen = set()
    out: List[ChapterCandidate] = []
    for c in candidates:
        if c.match_key in seen:
            logger.debug(f"Duplicate chapter title {c.match_key!r} (chapter {c.chapter_id}) ignored")
            continue
        seen.add(c.match_key)
        out.append(c)
    return out


# ------------------------- Cache -----------------------------------------------

class CandidateCache:
    """
    Thread-safe memo of candidate lists keyed by (course_id, user_id).

    A different course or user is a different key, so it gets its own list.
    Entries are evicted least-recently-used beyond `max_entries` and expire
    after `ttl_s` seconds (0 disables expiry). The builder is called outside
    the lock; two threads missing the same key may both build it.
    """

    def __init__(self, max_entries: int = 256, ttl_s: float = 0.0, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if ttl_s < 0:
            raise ValueError("ttl_s cannot be negative")
        self.max_entries = int(max_entries)
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[CacheKey, Tuple[float, Tuple[ChapterCandidate, ...]]]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, key: CacheKey) -> Optional[Tuple[ChapterCandidate, ...]]:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            stored_at, value = hit
            if self.ttl_s and self._clock() - stored_at >= self.ttl_s:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def _store(self, key: CacheKey, value: Tuple[ChapterCandidate, ...]) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted candidate list for course=%s user=%s", *evicted)

    def get_or_build(self, course_id: int, user_id: int, builder: Callable[[], Sequence[ChapterCandidate]]) -> Tuple[ChapterCandidate, ...]:
        key = (int(course_id), int(user_id))
        cached = self._lookup(key)
        if cached is not None:
            return cached
        value = tuple(builder())
        self._store(key, value)
        return value

    def invalidate(self, course_id: Optional[int] = None, user_id: Optional[int] = None) -> int:
        """Drop entries matching the given course and/or user. Returns how many went."""
        with self._lock:
            doomed = [
                k for k in self._entries
                if (course_id is None or k[0] == int(course_id)) and (user_id is None or k[1] == int(user_id))
            ]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.info(f"Invalidated {len(doomed)} cached candidate list(s)")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
