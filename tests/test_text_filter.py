import json

import pytest

from bookchapters.chapter_list import CandidateCache
from bookchapters.text_filter import (
    _ENV_SETTINGS,
    AutolinkConfig,
    ChapterLinkFilter,
    ContextLevel,
    FilterContext,
    _cli,
    load_env_settings,
    load_settings,
)

from .conftest import anchor


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No stray BOOKCHAPTERS_*/MOODLE_* variables and no .env above cwd."""
    for var in _ENV_SETTINGS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _ctx(course_id=2, user_id=6, level=ContextLevel.COURSE, chapter_id=None):
    return FilterContext(course_id=course_id, user_id=user_id, level=level, chapter_id=chapter_id)


# ------------------------- Filtering -------------------------------------------

def test_links_titles_in_course_text(course_store):
    text = "<p>Start with Getting Started, then Chapter One and Cats &amp; Dogs.</p>"
    out = ChapterLinkFilter(course_store).filter(text, _ctx())
    assert out == (
        "<p>Start with " + anchor("Getting Started", 11)
        + ", then " + anchor("Chapter One", 12)
        + " and " + anchor("Cats &amp; Dogs", 14, title="Cats & Dogs")
        + ".</p>"
    )


def test_literal_ampersand_title_links_too(course_store):
    out = ChapterLinkFilter(course_store).filter("Cats & Dogs", _ctx())
    assert out == anchor("Cats & Dogs", 14)


def test_no_course_context_leaves_text_alone(counting_store):
    text = "Getting Started"
    assert ChapterLinkFilter(counting_store).filter(text, _ctx(course_id=None)) == text
    assert counting_store.module_calls == 0


def test_empty_text_is_returned_without_lookups(counting_store):
    assert ChapterLinkFilter(counting_store).filter("", _ctx()) == ""
    assert counting_store.module_calls == 0


def test_course_without_books_leaves_text_alone(course_store):
    text = "Getting Started"
    assert ChapterLinkFilter(course_store).filter(text, _ctx(course_id=3)) == text


def test_chapter_page_does_not_link_itself(course_store):
    linker = ChapterLinkFilter(course_store)
    text = "Getting Started and Cats &amp; Dogs"
    out = linker.filter(text, _ctx(level=ContextLevel.MODULE, chapter_id=14))
    assert out == anchor("Getting Started", 11) + " and Cats &amp; Dogs"


def test_own_title_falls_through_to_shorter_titles(course_store):
    out = ChapterLinkFilter(course_store).filter("See Chapter One.", _ctx(level=ContextLevel.MODULE, chapter_id=12))
    assert out == "See " + anchor("Chapter", 13) + " One."


def test_chapter_id_outside_module_context_is_ignored(course_store):
    out = ChapterLinkFilter(course_store).filter("Getting Started", _ctx(level=ContextLevel.COURSE, chapter_id=11))
    assert out == anchor("Getting Started", 11)


def test_filtering_output_again_changes_nothing(course_store):
    linker = ChapterLinkFilter(course_store)
    once = linker.filter("Chapter One, Chapter, Getting Started", _ctx())
    assert linker.filter(once, _ctx()) == once


def test_restricted_book_only_links_for_allowed_user(course_store):
    linker = ChapterLinkFilter(course_store)
    assert linker.filter("Staff Notes", _ctx(user_id=6)) == "Staff Notes"
    assert 'chapterid=31"' in linker.filter("Staff Notes", _ctx(user_id=5)).replace("&amp;", "&")


def test_candidates_are_cached_per_course_and_user(counting_store):
    linker = ChapterLinkFilter(counting_store)
    linker.filter("Getting Started", _ctx())
    linker.filter("Chapter One", _ctx())
    assert counting_store.module_calls == 1
    linker.filter("Chapter One", _ctx(user_id=5))
    assert counting_store.module_calls == 2


def test_cache_can_be_shared_between_filters(counting_store):
    cache = CandidateCache()
    ChapterLinkFilter(counting_store, cache=cache).filter("Getting Started", _ctx())
    ChapterLinkFilter(counting_store, cache=cache).filter("Getting Started", _ctx())
    assert counting_store.module_calls == 1


def test_separate_chapter_store_is_used(course_store):
    class NoChapters:
        def get_chapters(self, module_instance_id):
            return []

    assert ChapterLinkFilter(course_store, NoChapters()).filter("Getting Started", _ctx()) == "Getting Started"


def test_collaborator_errors_reach_the_caller():
    class Broken:
        def list_visible_modules(self, course_id, user_id):
            raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError, match="database unavailable"):
        ChapterLinkFilter(Broken()).filter("Getting Started", _ctx())


def test_config_switches_reach_the_linker(course_store):
    config = AutolinkConfig(css_class="chapterlink", case_sensitive=False)
    out = ChapterLinkFilter(course_store, config=config).filter("getting started", _ctx())
    assert out.startswith('<a class="chapterlink" title="Getting Started"')
    assert out.endswith(">getting started</a>")


# ------------------------- Configuration ---------------------------------------

def test_config_defaults():
    cfg = AutolinkConfig()
    assert cfg.css_class == "autolink"
    assert cfg.module_type == "book"
    assert cfg.case_sensitive is True
    assert cfg.whole_words is False


def test_config_from_settings_resolves_placeholders(monkeypatch):
    monkeypatch.setenv("LINK_CLASS", "booklink")
    cfg = AutolinkConfig.from_settings({
        "bookchapters": {
            "css_class": "${LINK_CLASS}",
            "module_type": "${MISSING_TYPE:book}",
            "whole_words": "yes",
            "link_entity_variants": False,
            "cache_ttl_s": "30",
        }
    })
    assert cfg.css_class == "booklink"
    assert cfg.module_type == "book"
    assert cfg.whole_words is True
    assert cfg.link_entity_variants is False
    assert cfg.cache_ttl_s == 30.0


def test_config_from_empty_settings():
    assert AutolinkConfig.from_settings(None) == AutolinkConfig()


@pytest.mark.parametrize("kwargs", [
    {"css_class": " "},
    {"module_type": ""},
    {"chapter_param": ""},
    {"cache_max_entries": 0},
    {"cache_ttl_s": -5},
])
def test_config_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        AutolinkConfig(**kwargs)


def test_env_settings_come_from_dotenv(clean_env):
    (clean_env / ".env").write_text(
        "BOOKCHAPTERS_CSS_CLASS=fromdotenv\nMOODLE_URL=https://lms.test\n", encoding="utf-8"
    )
    settings = load_env_settings()
    assert settings["bookchapters"] == {"css_class": "fromdotenv"}
    assert settings["moodle"] == {"url": "https://lms.test"}


def test_settings_file_is_overlaid_by_environment(clean_env, monkeypatch):
    path = clean_env / "settings.jsonc"
    path.write_text(
        '{\n  // filter options\n  "bookchapters": {"css_class": "fromfile", "whole_words": true,},\n}\n',
        encoding="utf-8",
    )
    monkeypatch.setenv("BOOKCHAPTERS_CSS_CLASS", "fromenv")
    settings = load_settings(path)
    assert settings["bookchapters"] == {"css_class": "fromenv", "whole_words": True}
    assert AutolinkConfig.from_settings(settings).whole_words is True


# ------------------------- CLI -------------------------------------------------

def _write_fixture(tmp_path):
    fixture = tmp_path / "course.jsonc"
    fixture.write_text(
        "{\n"
        "  // one course, one book\n"
        '  "courses": {"2": {"modules": [\n'
        '    {"type": "book", "instance_id": 7, "url": "https://lms.example.edu/mod/book/view.php?id=31"},\n'
        "  ]}},\n"
        '  "chapters": {"7": [{"id": 11, "title": "Getting Started"}]},\n'
        "}\n",
        encoding="utf-8",
    )
    return fixture


def test_cli_filters_file_with_fixture(clean_env):
    fixture = _write_fixture(clean_env)
    page = clean_env / "page.html"
    page.write_text("<p>Getting Started</p>", encoding="utf-8")
    out = clean_env / "out.html"

    code = _cli([str(page), "--course-id", "2", "--fixture", str(fixture), "--out", str(out)])

    assert code == 0
    assert out.read_text(encoding="utf-8") == "<p>" + anchor("Getting Started", 11) + "</p>"


def test_cli_writes_to_stdout_and_honours_chapter_id(clean_env, capsys):
    fixture = _write_fixture(clean_env)
    page = clean_env / "page.html"
    page.write_text("<p>Getting Started</p>", encoding="utf-8")

    code = _cli([str(page), "--course-id", "2", "--chapter-id", "11", "--fixture", str(fixture)])

    assert code == 0
    assert capsys.readouterr().out == "<p>Getting Started</p>"


def test_cli_without_data_source_is_a_usage_error(clean_env):
    page = clean_env / "page.html"
    page.write_text("x", encoding="utf-8")
    assert _cli([str(page), "--course-id", "2"]) == 2


def test_cli_missing_fixture_fails(clean_env):
    page = clean_env / "page.html"
    page.write_text("x", encoding="utf-8")
    assert _cli([str(page), "--course-id", "2", "--fixture", str(clean_env / "nope.json")]) == 1


def test_cli_rejects_broken_settings(clean_env):
    page = clean_env / "page.html"
    page.write_text("x", encoding="utf-8")
    settings = clean_env / "settings.json"
    settings.write_text(json.dumps({"bookchapters": {"cache_max_entries": 0}}), encoding="utf-8")
    assert _cli([str(page), "--course-id", "2", "--settings", str(settings)]) == 2
