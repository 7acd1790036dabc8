import pytest

from bookchapters.course_data import Chapter, InMemoryCourseStore, Module
from bookchapters.utils.markup import escape_text

BOOK_URL = "https://lms.example.edu/mod/book/view.php?id=31"
STAFF_BOOK_URL = "https://lms.example.edu/mod/book/view.php?id=40"


def chapter_url(base: str, chapter_id: int) -> str:
    return f"{base}&chapterid={chapter_id}"


def anchor(text: str, chapter_id: int, *, title: str = None, base: str = BOOK_URL, css_class: str = "autolink") -> str:
    """Expected link markup for a chapter of the main test book."""
    href = escape_text(chapter_url(base, chapter_id))
    return f'<a class="{css_class}" title="{escape_text(title or text)}" href="{href}">{text}</a>'


class CountingStore:
    """Wraps a store and counts collaborator calls."""

    def __init__(self, inner):
        self.inner = inner
        self.module_calls = 0
        self.chapter_calls = 0

    def list_visible_modules(self, course_id, user_id):
        self.module_calls += 1
        return self.inner.list_visible_modules(course_id, user_id)

    def get_chapters(self, module_instance_id):
        self.chapter_calls += 1
        return self.inner.get_chapters(module_instance_id)


@pytest.fixture
def course_store():
    store = InMemoryCourseStore()
    # Course 2: the main book
    store.add_module(2, Module(type="book", visible=True, accessible=True, instance_id=7, url=BOOK_URL))
    store.add_chapters(7, [
        Chapter(id=11, title="Getting Started"),
        Chapter(id=12, title="Chapter One"),
        Chapter(id=13, title="Chapter"),
        Chapter(id=14, title="  Cats & Dogs  "),
        Chapter(id=15, title="Secret Chapter", hidden=True),
        Chapter(id=16, title="<b> </b>"),
    ])
    # Hidden book
    store.add_module(2, Module(type="book", visible=False, accessible=True, instance_id=8,
                               url="https://lms.example.edu/mod/book/view.php?id=32"))
    store.add_chapters(8, [Chapter(id=21, title="Hidden Book Chapter")])
    # Not a book
    store.add_module(2, Module(type="forum", visible=True, accessible=True, instance_id=9,
                               url="https://lms.example.edu/mod/forum/view.php?id=33"))
    store.add_chapters(9, [Chapter(id=22, title="Forum Thread")])
    # Only user 5 may open this one
    store.add_module(2, Module(type="book", visible=True, accessible=True, instance_id=10, url=STAFF_BOOK_URL),
                     restricted_to=[5])
    store.add_chapters(10, [Chapter(id=31, title="Staff Notes")])
    return store


@pytest.fixture
def counting_store(course_store):
    return CountingStore(course_store)
