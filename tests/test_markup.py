import pytest

from bookchapters.utils.markup import append_query_params, end_tag, escape_text, start_tag, strip_tags


@pytest.mark.parametrize("raw, expected", [
    ("Cats & Dogs", "Cats &amp; Dogs"),
    ("<b>\"x\"</b>", "&lt;b&gt;&quot;x&quot;&lt;/b&gt;"),
    ("It's", "It&#039;s"),
    ("caf&#233; &#x1F600;", "caf&#233; &#x1F600;"),
    ("&amp;", "&amp;amp;"),
    (None, ""),
    (False, ""),
    (42, "42"),
])
def test_escape_text(raw, expected):
    assert escape_text(raw) == expected


def test_strip_tags_removes_markup_and_comments():
    assert strip_tags("<p>Hello <!-- note --><em>world</em></p>") == "Hello world"
    assert strip_tags("") == ""
    assert strip_tags("plain & simple") == "plain & simple"


def test_start_tag_keeps_order_and_escapes():
    tag = start_tag("a", {"class": "autolink", "title": "Q&A", "href": "/x?a=1&b=2", "rel": None})
    assert tag == '<a class="autolink" title="Q&amp;A" href="/x?a=1&amp;b=2">'
    assert end_tag("a") == "</a>"


def test_start_tag_without_attributes():
    assert start_tag("span") == "<span>"


@pytest.mark.parametrize("name, attrs", [
    ("", None),
    ("a b", None),
    ("a", {"on click": "x"}),
])
def test_start_tag_rejects_bad_names(name, attrs):
    with pytest.raises(ValueError):
        start_tag(name, attrs)


def test_append_query_params_keeps_existing_url_intact():
    url = "https://LMS.example.edu/mod/book/view.php?id=31&x=a%20b&t=1&t=2#top"
    assert append_query_params(url, {"chapterid": 5}) == \
        "https://LMS.example.edu/mod/book/view.php?id=31&x=a%20b&t=1&t=2&chapterid=5#top"


@pytest.mark.parametrize("url, expected", [
    ("https://lms/mod/book/view.php", "https://lms/mod/book/view.php?chapterid=5"),
    ("https://lms/mod/book/view.php?", "https://lms/mod/book/view.php?chapterid=5"),
    ("https://lms/view.php?id=1&", "https://lms/view.php?id=1&chapterid=5"),
    ("view.php#sec", "view.php?chapterid=5#sec"),
])
def test_append_query_params_picks_separator(url, expected):
    assert append_query_params(url, {"chapterid": 5}) == expected


def test_append_query_params_encodes_only_new_pairs():
    assert append_query_params("v.php?q=a+b", {"note": "x y&z", "empty": None}) == "v.php?q=a+b&note=x%20y%26z&empty="
    assert append_query_params("v.php?q=1", {}) == "v.php?q=1"
