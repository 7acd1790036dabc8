# bookchapters/utils/jsonc.py
import json
import os
import re
from pathlib import Path
from typing import Any, Union

# A JSON string, or a // line comment, or a /* ... */ block comment.
# Strings are matched first so comment markers inside them are left alone.
_COMMENT = re.compile(r'"(?:\\.|[^"\\])*"|//[^\n]*|/\*.*?\*/', re.DOTALL)
# A JSON string, or a comma followed only by whitespace and } or ]
_TRAILING_COMMA = re.compile(r'"(?:\\.|[^"\\])*"|,(?=\s*[}\]])')
# ${VAR} or ${VAR:default}
_ENV_VAR = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def _keep_strings(m: "re.Match") -> str:
    token = m.group(0)
    if token.startswith('"'):
        return token
    return " " if token.startswith("/*") else ""


def loads_jsonc(text: str) -> Any:
    """Parse JSON that may contain comments and trailing commas."""
    if text.startswith("\ufeff"):
        text = text.lstrip("\ufeff")
    text = _COMMENT.sub(_keep_strings, text)
    text = _TRAILING_COMMA.sub(_keep_strings, text)
    return json.loads(text)


def load_jsonc(path: Union[str, Path]) -> Any:
    """
    Read JSON that may contain // or /* */ comments.
    Returns a Python object like json.load(s) would.
    """
    return loads_jsonc(Path(path).read_text(encoding="utf-8"))


def resolve_env_placeholders(obj: Any) -> Any:
    """Replace ${VAR} / ${VAR:default} tokens in strings, recursively."""
    if isinstance(obj, dict):
        return {k: resolve_env_placeholders(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [resolve_env_placeholders(v) for v in obj]
    if isinstance(obj, str):
        return _ENV_VAR.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), obj)
    return obj


def as_bool(value: Any) -> bool:
    """Settings/env flags: "1", "true", "yes" (any case) and truthy non-strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)
