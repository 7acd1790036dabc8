# bookchapters/utils/markup.py

import re
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_HTML_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
# &amp;#123; / &amp;#x1F; -> keep numeric entities intact after escaping
_DOUBLE_NUMERIC_ENTITY_RE = re.compile(r"&amp;#(\d+|x[0-9a-f]+);", re.IGNORECASE)
_ATTR_NAME_RE = re.compile(r"^[A-Za-z_:][-A-Za-z0-9_:.]*$")


# --------------------------- Escaping ----------------------------------------

def escape_text(value: Any) -> str:
    """
    Escape text for HTML output the way the host platform does:
    & < > " ' become entities, numeric entities already present survive.

      escape_text("Cats & Dogs")  -> "Cats &amp; Dogs"
      escape_text("caf&#233;")    -> "caf&#233;"
    """
    if value is None or value is False:
        return ""
    s = str(value)
    s = (
        s.replace("&", "&amp;")
         .replace("<", "&lt;")
         .replace(">", "&gt;")
         .replace('"', "&quot;")
         .replace("'", "&#039;")
    )
    return _DOUBLE_NUMERIC_ENTITY_RE.sub(r"&#\1;", s)


def strip_tags(text_or_html: str) -> str:
    """Remove HTML comments and tags, leaving the text between them untouched."""
    if not text_or_html:
        return ""
    txt = _HTML_COMMENT_RE.sub("", text_or_html)
    return _HTML_TAG_RE.sub("", txt)


# --------------------------- Tag building ------------------------------------

def start_tag(name: str, attributes: Optional[Dict[str, Any]] = None) -> str:
    """
    Build an opening tag. Attribute values are escaped; None values are dropped.
    Insertion order of `attributes` is kept so output is reproducible.
    """
    if not name or not _ATTR_NAME_RE.match(name):
        raise ValueError(f"Invalid tag name: {name!r}")
    parts = [name]
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if not _ATTR_NAME_RE.match(key):
            raise ValueError(f"Invalid attribute name: {key!r}")
        parts.append(f'{key}="{escape_text(value)}"')
    return "<" + " ".join(parts) + ">"


def end_tag(name: str) -> str:
    return f"</{name}>"


# --------------------------- URLs --------------------------------------------

def append_query_params(url: str, params: Dict[str, Any]) -> str:
    """
    Append query parameters to `url` as-is: the existing query string and any
    #fragment are left byte for byte, only the new pairs are encoded.

      append_query_params("view.php?id=31&x=a%20b", {"chapterid": 5})
        -> "view.php?id=31&x=a%20b&chapterid=5"
    """
    if not params:
        return url
    base, hash_mark, fragment = url.partition("#")
    added = urlencode([(k, "" if v is None else str(v)) for k, v in params.items()], quote_via=quote)
    if "?" not in base:
        joiner = "?"
    elif base.endswith(("?", "&")):
        joiner = ""
    else:
        joiner = "&"
    return f"{base}{joiner}{added}{hash_mark}{fragment}"
