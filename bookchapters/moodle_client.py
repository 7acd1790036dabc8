# bookchapters/moodle_client.py

import json
import logging
import random
import re
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .course_data import Chapter, Module
from .utils.jsonc import as_bool

logger = logging.getLogger(__name__)

_CHAPTER_HREF_RE = re.compile(r"^(\d+)/")
_RETRY_STATUSES = (429, 500, 502, 503, 504)


class MoodleServiceError(RuntimeError):
    """Raised when the web service answers with an exception or cannot be reached."""

    def __init__(self, message: str, errorcode: Optional[str] = None):
        super().__init__(message)
        self.errorcode = errorcode


class MoodleWebServiceStore:
    """
    Module listing + chapter store backed by the Moodle REST web service.

    Visibility is whatever the token's user sees: the web service computes
    `uservisible` for the token owner, so the user id passed by the filter is
    only used for logging. Book chapters come from the "structure" entry that
    core_course_get_contents returns for every book module, so get_chapters()
    answers from the last listing of the course that holds the book.

    settings.json -> moodle:
    {
      "url": "https://lms.example.edu",
      "token": "${MOODLE_TOKEN}",
      "timeout_s": 20,
      "retries": 2
    }
    """

    ENDPOINT = "/webservice/rest/server.php"

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_s: float = 20,
        retries: int = 2,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        module_type: str = "book",
    ):
        if not base_url:
            raise ValueError("Moodle base URL is required")
        if not token:
            raise ValueError("Moodle web service token is required")
        if retries < 0:
            raise ValueError("retries cannot be negative")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_s = float(timeout_s)
        self.retries = int(retries)
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "bookchapters-autolink/1.0"})
        self.module_type = module_type
        self._book_chapters: Dict[int, List[Chapter]] = {}

    @classmethod
    def from_settings(cls, app_settings: Dict[str, Any], **kwargs) -> "MoodleWebServiceStore":
        cfg = (app_settings or {}).get("moodle") or {}
        # chapters are read for the same module type the filter links
        linker_cfg = (app_settings or {}).get("bookchapters") or {}
        kwargs.setdefault("module_type", str(linker_cfg.get("module_type") or "book"))
        return cls(
            str(cfg.get("url") or ""),
            str(cfg.get("token") or ""),
            timeout_s=float(cfg.get("timeout_s", 20) or 20),
            retries=int(cfg.get("retries", 2) or 0),
            **kwargs,
        )

    # ------------------------- Transport -------------------------------------

    def call(self, wsfunction: str, **params: Any) -> Any:
        """POST one web-service function; retries 429/5xx and network errors."""
        url = self.base_url + self.ENDPOINT
        data = {"wstoken": self.token, "wsfunction": wsfunction, "moodlewsrestformat": "json"}
        data.update(params)

        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                resp = self._session.post(url, data=data, timeout=self.timeout_s)
            except requests.RequestException as e:
                if attempt < attempts:
                    wait = (2 ** (attempt - 1)) + random.uniform(0.0, 0.5)
                    logger.warning("Network error calling %s: %s. Retrying in %.2fs", wsfunction, e, wait)
                    self._sleep(wait)
                    continue
                raise MoodleServiceError(f"{wsfunction} failed: {e}") from e

            if resp.status_code in _RETRY_STATUSES and attempt < attempts:
                wait = (2 ** (attempt - 1)) + random.uniform(0.0, 0.5)
                logger.warning("%s returned HTTP %s; retrying in %.2fs (attempt %d/%d)",
                               wsfunction, resp.status_code, wait, attempt, attempts)
                self._sleep(wait)
                continue

            if resp.status_code != 200:
                raise MoodleServiceError(f"{wsfunction} returned HTTP {resp.status_code}", errorcode=str(resp.status_code))

            try:
                payload = resp.json()
            except ValueError as e:
                raise MoodleServiceError(f"{wsfunction} returned invalid JSON") from e

            if isinstance(payload, dict) and payload.get("exception"):
                raise MoodleServiceError(
                    str(payload.get("message") or payload.get("exception")),
                    errorcode=payload.get("errorcode"),
                )
            return payload

        raise MoodleServiceError(f"{wsfunction} failed after {attempts} attempt(s)")

    # ------------------------- Parsing ---------------------------------------

    @staticmethod
    def _flatten_toc(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        flat: List[Dict[str, Any]] = []
        for item in items or []:
            flat.append(item)
            flat.extend(MoodleWebServiceStore._flatten_toc(item.get("subitems") or []))
        return flat

    @classmethod
    def _chapters_from_contents(cls, contents: List[Dict[str, Any]]) -> List[Chapter]:
        structure = next((c for c in contents if c.get("filename") == "structure"), None)
        if structure is not None:
            try:
                toc = json.loads(structure.get("content") or "[]")
            except ValueError:
                logger.warning("Unreadable book structure; falling back to chapter files.")
            else:
                chapters: List[Chapter] = []
                for item in cls._flatten_toc(toc):
                    m = _CHAPTER_HREF_RE.match(str(item.get("href") or ""))
                    if not m:
                        continue
                    chapters.append(Chapter(
                        id=int(m.group(1)),
                        title=str(item.get("title") or ""),
                        hidden=as_bool(item.get("hidden", False)),
                    ))
                return chapters

        # Older sites: one index.html entry per chapter, title in "content"
        chapters = []
        for c in contents:
            m = re.match(r"^/(\d+)/$", str(c.get("filepath") or ""))
            if m and c.get("filename") == "index.html":
                chapters.append(Chapter(id=int(m.group(1)), title=str(c.get("content") or "")))
        return chapters

    # ------------------------- Collaborator API ------------------------------

    def list_visible_modules(self, course_id: int, user_id: int) -> List[Module]:
        sections = self.call("core_course_get_contents", courseid=int(course_id))
        if not isinstance(sections, list):
            raise MoodleServiceError("core_course_get_contents returned an unexpected payload")

        modules: List[Module] = []
        for section in sections:
            for raw in section.get("modules") or []:
                module = Module(
                    type=str(raw.get("modname") or ""),
                    visible=as_bool(raw.get("visible", True)) and as_bool(section.get("visible", True)),
                    accessible=as_bool(raw.get("uservisible", True)) and not as_bool(raw.get("noviewlink", False)),
                    instance_id=int(raw.get("instance") or 0),
                    url=str(raw.get("url") or ""),
                )
                if module.type == self.module_type:
                    self._book_chapters[module.instance_id] = self._chapters_from_contents(raw.get("contents") or [])
                modules.append(module)

        logger.debug("Course %s: %d module(s) listed for user %s", course_id, len(modules), user_id)
        return modules

    def get_chapters(self, module_instance_id: int) -> List[Chapter]:
        try:
            return list(self._book_chapters[int(module_instance_id)])
        except KeyError:
            raise MoodleServiceError(
                f"Book {module_instance_id} has not been listed; call list_visible_modules() for its course first",
                errorcode="unknownbook",
            ) from None
