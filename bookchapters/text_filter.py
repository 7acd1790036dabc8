# bookchapters/text_filter.py

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv, find_dotenv

from .chapter_list import CandidateCache, ChapterCandidate, build_candidates, dedupe_candidates, exclude_self
from .phrase_linker import apply_links_with_count
from .utils.jsonc import as_bool, load_jsonc, resolve_env_placeholders

logger = logging.getLogger(__name__)


class ContextLevel(Enum):
    SYSTEM = 10
    USER = 30
    COURSECAT = 40
    COURSE = 50
    MODULE = 70
    BLOCK = 80


@dataclass(frozen=True)
class FilterContext:
    """Where the text is being rendered and for whom."""
    course_id: Optional[int]
    user_id: int
    level: ContextLevel = ContextLevel.COURSE
    chapter_id: Optional[int] = None  # set when rendering a chapter page


@dataclass
class AutolinkConfig:
    css_class: str = "autolink"
    module_type: str = "book"
    chapter_param: str = "chapterid"
    case_sensitive: bool = True
    whole_words: bool = False
    # Also link the &amp;-escaped spelling of titles containing & < > " '
    link_entity_variants: bool = True
    cache_max_entries: int = 256
    cache_ttl_s: float = 0.0  # 0 = never expire

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not (self.css_class or "").strip():
            raise ValueError("css_class cannot be empty")
        if not (self.module_type or "").strip():
            raise ValueError("module_type cannot be empty")
        if not (self.chapter_param or "").strip():
            raise ValueError("chapter_param cannot be empty")
        if self.cache_max_entries < 1:
            raise ValueError("cache_max_entries must be at least 1")
        if self.cache_ttl_s < 0:
            raise ValueError("cache_ttl_s cannot be negative")

    @classmethod
    def from_settings(cls, app_settings: Optional[Dict[str, Any]]) -> "AutolinkConfig":
        """Build from the "bookchapters" object of the app settings; ${VAR} resolved."""
        raw = resolve_env_placeholders((app_settings or {}).get("bookchapters") or {})
        defaults = cls()
        return cls(
            css_class=str(raw.get("css_class", defaults.css_class)),
            module_type=str(raw.get("module_type", defaults.module_type)),
            chapter_param=str(raw.get("chapter_param", defaults.chapter_param)),
            case_sensitive=as_bool(raw.get("case_sensitive", defaults.case_sensitive)),
            whole_words=as_bool(raw.get("whole_words", defaults.whole_words)),
            link_entity_variants=as_bool(raw.get("link_entity_variants", defaults.link_entity_variants)),
            cache_max_entries=int(raw.get("cache_max_entries", defaults.cache_max_entries)),
            cache_ttl_s=float(raw.get("cache_ttl_s", defaults.cache_ttl_s)),
        )


# env var -> (section, key)
_ENV_SETTINGS: Dict[str, Tuple[str, str]] = {
    "BOOKCHAPTERS_CSS_CLASS": ("bookchapters", "css_class"),
    "BOOKCHAPTERS_MODULE_TYPE": ("bookchapters", "module_type"),
    "BOOKCHAPTERS_CHAPTER_PARAM": ("bookchapters", "chapter_param"),
    "BOOKCHAPTERS_CASE_SENSITIVE": ("bookchapters", "case_sensitive"),
    "BOOKCHAPTERS_WHOLE_WORDS": ("bookchapters", "whole_words"),
    "BOOKCHAPTERS_ENTITY_VARIANTS": ("bookchapters", "link_entity_variants"),
    "BOOKCHAPTERS_CACHE_MAX": ("bookchapters", "cache_max_entries"),
    "BOOKCHAPTERS_CACHE_TTL_S": ("bookchapters", "cache_ttl_s"),
    "MOODLE_URL": ("moodle", "url"),
    "MOODLE_TOKEN": ("moodle", "token"),
    "MOODLE_TIMEOUT_S": ("moodle", "timeout_s"),
    "MOODLE_RETRIES": ("moodle", "retries"),
}


def load_env_settings() -> Dict[str, Dict[str, Any]]:
    """Settings dict from .env / environment; only variables that are set appear."""
    load_dotenv(find_dotenv(usecwd=True))
    settings: Dict[str, Dict[str, Any]] = {"bookchapters": {}, "moodle": {}}
    for var, (section, key) in _ENV_SETTINGS.items():
        value = os.getenv(var)
        if value is not None and value != "":
            settings[section][key] = value
    return settings


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """Settings file (JSON/JSONC, optional) overlaid with environment values."""
    settings: Dict[str, Any] = {}
    if path is not None:
        data = load_jsonc(path)
        if not isinstance(data, dict):
            raise TypeError("Settings file must contain a JSON object.")
        settings = resolve_env_placeholders(data)
    for section, values in load_env_settings().items():
        settings.setdefault(section, {}).update(values)
    return settings


class ChapterLinkFilter:
    """
    Text filter that links book chapter titles found in course content.

    `modules` answers list_visible_modules(course_id, user_id) and `chapters`
    answers get_chapters(module_instance_id); one object may play both roles.
    The candidate cache can be shared between filter instances (one per
    request, say) and is safe to use from several threads.
    """

    def __init__(self, modules, chapters=None, config: Optional[AutolinkConfig] = None,
                 cache: Optional[CandidateCache] = None):
        self.config = config if config else AutolinkConfig()
        self.modules = modules
        self.chapters = chapters if chapters is not None else modules
        self.cache = cache if cache is not None else CandidateCache(
            max_entries=self.config.cache_max_entries, ttl_s=self.config.cache_ttl_s
        )

    def candidates_for(self, course_id: int, user_id: int) -> Tuple[ChapterCandidate, ...]:
        return self.cache.get_or_build(
            course_id,
            user_id,
            lambda: build_candidates(
                course_id,
                user_id,
                self.modules,
                self.chapters,
                module_type=self.config.module_type,
                chapter_param=self.config.chapter_param,
                entity_variants=self.config.link_entity_variants,
            ),
        )

    def candidates_for_context(self, context: FilterContext) -> List[ChapterCandidate]:
        """Ordered candidates for a context, own chapter and duplicate titles removed."""
        if context.course_id is None:
            return []
        candidates = self.candidates_for(context.course_id, context.user_id)
        current = context.chapter_id if context.level is ContextLevel.MODULE else None
        return dedupe_candidates(exclude_self(candidates, current))

    def filter(self, text: str, context: FilterContext) -> str:
        if not text:
            return text
        if context is None or context.course_id is None:
            logger.debug("No course context; text left unchanged.")
            return text

        candidates = self.candidates_for_context(context)
        if not candidates:
            return text

        out, linked = apply_links_with_count(
            text,
            candidates,
            css_class=self.config.css_class,
            case_sensitive=self.config.case_sensitive,
            whole_words=self.config.whole_words,
        )
        if linked:
            logger.debug(f"Linked {linked} chapter title(s) in course {context.course_id}")
        return out


# -------------------------- CLI --------------------------------------------

def _configure_logging(verbose: bool) -> None:
    if logging.getLogger().handlers:
        return
    log_dir = Path("logs")
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "bookchapters.log", encoding="utf-8"))
    except OSError:
        pass
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bookchapters",
        description="Link book chapter titles found in an HTML fragment to their chapter pages.",
    )
    ap.add_argument("html_file", help="HTML file to filter ('-' for stdin)")
    ap.add_argument("--course-id", type=int, required=True, help="course the text belongs to")
    ap.add_argument("--user-id", type=int, default=0, help="acting user (affects visibility)")
    ap.add_argument("--chapter-id", type=int, default=None, help="chapter page being rendered, if any")
    ap.add_argument("--fixture", default=None, help="JSON/JSONC course fixture instead of a live site")
    ap.add_argument("--moodle-url", default=None, help="Moodle site URL (token from MOODLE_TOKEN)")
    ap.add_argument("--settings", default=None, help="JSON/JSONC settings file")
    ap.add_argument("--out", default=None, help="write result here instead of stdout")
    ap.add_argument("-v", "--verbose", action="store_true")
    return ap


def _cli(argv: Optional[List[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    _configure_logging(args.verbose)

    from .course_data import InMemoryCourseStore
    from .moodle_client import MoodleServiceError, MoodleWebServiceStore

    try:
        settings = load_settings(Path(args.settings) if args.settings else None)
        config = AutolinkConfig.from_settings(settings)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    if args.moodle_url:
        settings.setdefault("moodle", {})["url"] = args.moodle_url

    try:
        if args.fixture:
            store = InMemoryCourseStore.from_file(args.fixture)
        elif (settings.get("moodle") or {}).get("url"):
            store = MoodleWebServiceStore.from_settings(settings)
        else:
            logger.error("No data source: pass --fixture or --moodle-url (or set MOODLE_URL).")
            return 2
    except (OSError, ValueError, TypeError, KeyError) as e:
        logger.error(f"Could not open data source: {e}")
        return 1

    try:
        if args.html_file == "-":
            text = sys.stdin.read()
        else:
            text = Path(args.html_file).read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Could not read {args.html_file}: {e}")
        return 2

    context = FilterContext(
        course_id=args.course_id,
        user_id=args.user_id,
        level=ContextLevel.MODULE if args.chapter_id is not None else ContextLevel.COURSE,
        chapter_id=args.chapter_id,
    )

    try:
        result = ChapterLinkFilter(store, config=config).filter(text, context)
    except MoodleServiceError as e:
        logger.error(f"Moodle web service error ({e.errorcode or 'n/a'}): {e}")
        return 1

    if args.out:
        Path(args.out).write_text(result, encoding="utf-8")
        logger.info(f"Wrote filtered HTML to {args.out}")
    else:
        sys.stdout.write(result)
    return 0


if __name__ == "__main__":
    sys.exit(_cli())
