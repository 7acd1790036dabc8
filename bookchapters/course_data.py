# bookchapters/course_data.py

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from .utils.jsonc import as_bool, load_jsonc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Module:
    """An activity on the course page, as the host's module listing reports it."""
    type: str
    visible: bool
    accessible: bool
    instance_id: int
    url: str


@dataclass(frozen=True)
class Chapter:
    id: int
    title: str
    hidden: bool = False


class InMemoryCourseStore:
    """
    Module listing + chapter store backed by plain Python data.

    Used by tests, by the CLI (--fixture) and by hosts that already hold the
    course structure in memory. A module may be restricted to a set of user
    ids; for anyone else it is reported as not accessible.

    Fixture file (JSON or JSONC):
      {
        "courses": {
          "2": {"modules": [
            {"type": "book", "instance_id": 7, "url": "https://lms/mod/book/view.php?id=31",
             "visible": true, "accessible": true, "restricted_to": [3, 4]}
          ]}
        },
        "chapters": {
          "7": [{"id": 11, "title": "Getting Started", "hidden": false}]
        }
      }
    """

    def __init__(self):
        self._modules: Dict[int, List[Tuple[Module, Optional[FrozenSet[int]]]]] = {}
        self._chapters: Dict[int, List[Chapter]] = {}

    # ------------------------- Population ------------------------------------

    def add_module(self, course_id: int, module: Module, *, restricted_to: Optional[Iterable[int]] = None) -> Module:
        allowed = frozenset(int(u) for u in restricted_to) if restricted_to is not None else None
        self._modules.setdefault(int(course_id), []).append((module, allowed))
        return module

    def add_chapters(self, instance_id: int, chapters: Iterable[Chapter]) -> None:
        self._chapters.setdefault(int(instance_id), []).extend(chapters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryCourseStore":
        store = cls()
        if not isinstance(data, dict):
            raise TypeError("Course fixture must be a JSON object.")

        for course_key, course in (data.get("courses") or {}).items():
            for raw in (course or {}).get("modules") or []:
                module = Module(
                    type=str(raw.get("type") or "").strip(),
                    visible=as_bool(raw.get("visible", True)),
                    accessible=as_bool(raw.get("accessible", True)),
                    instance_id=int(raw["instance_id"]),
                    url=str(raw.get("url") or ""),
                )
                store.add_module(int(course_key), module, restricted_to=raw.get("restricted_to"))

        for instance_key, chapters in (data.get("chapters") or {}).items():
            store.add_chapters(
                int(instance_key),
                (
                    Chapter(id=int(c["id"]), title=str(c.get("title") or ""), hidden=as_bool(c.get("hidden", False)))
                    for c in chapters or []
                ),
            )
        return store

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryCourseStore":
        p = Path(path)
        if not p.is_file():
            raise FileNotFoundError(f"Course fixture not found: {p}")
        store = cls.from_dict(load_jsonc(p))
        logger.info(f"Loaded course fixture {p.name}: {len(store._modules)} course(s), {len(store._chapters)} book(s)")
        return store

    # ------------------------- Collaborator API ------------------------------

    def list_visible_modules(self, course_id: int, user_id: int) -> List[Module]:
        out: List[Module] = []
        for module, allowed in self._modules.get(int(course_id), []):
            if allowed is not None and int(user_id) not in allowed:
                module = replace(module, accessible=False)
            out.append(module)
        return out

    def get_chapters(self, module_instance_id: int) -> List[Chapter]:
        return list(self._chapters.get(int(module_instance_id), []))
