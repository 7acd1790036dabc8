"""
bookchapters
============

Text filter that turns book chapter titles mentioned in course content into
links to the chapter pages.

Usage:
    from bookchapters import ChapterLinkFilter, FilterContext, InMemoryCourseStore

    store = InMemoryCourseStore.from_file("course.jsonc")
    linker = ChapterLinkFilter(store)
    html = linker.filter(html, FilterContext(course_id=2, user_id=5))
"""

__version__ = "1.0.0"

from .chapter_list import (
    CandidateCache,
    ChapterCandidate,
    Variant,
    build_candidates,
    dedupe_candidates,
    exclude_self,
)
from .course_data import Chapter, InMemoryCourseStore, Module
from .moodle_client import MoodleServiceError, MoodleWebServiceStore
from .phrase_linker import apply_links, apply_links_with_count
from .text_filter import (
    AutolinkConfig,
    ChapterLinkFilter,
    ContextLevel,
    FilterContext,
    load_env_settings,
    load_settings,
)

__all__ = [
    # Filter
    "ChapterLinkFilter",
    "FilterContext",
    "ContextLevel",
    "AutolinkConfig",
    "load_env_settings",
    "load_settings",
    # Candidates
    "ChapterCandidate",
    "Variant",
    "CandidateCache",
    "build_candidates",
    "exclude_self",
    "dedupe_candidates",
    # Substitution
    "apply_links",
    "apply_links_with_count",
    # Data sources
    "Module",
    "Chapter",
    "InMemoryCourseStore",
    "MoodleWebServiceStore",
    "MoodleServiceError",
]
