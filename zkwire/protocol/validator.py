from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from .constants import SEQUENCE_DIGITS
from .errors import BadArgumentsError

SCHEMA_DIR = Path(__file__).parent / "schemas"

SCHEMA_REGISTRY: Dict[str, str] = {
    "client_config": "client_config.json",
}


def _schema_path(name: str) -> Optional[Path]:
    filename = SCHEMA_REGISTRY.get(name)
    if not filename:
        return None
    path = SCHEMA_DIR / filename
    return path if path.exists() else None


@lru_cache(maxsize=16)
def load_schema(name: str) -> Optional[dict]:
    """Load JSON schema by registry name if present."""
    path = _schema_path(name)
    if not path:
        return None
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


def validate_path(path: str, allow_root: bool = True) -> str:
    """
    Reject node paths the server would refuse.

    A path is absolute, has no trailing slash (except the root itself), no
    empty, ``.`` or ``..`` segments and no NUL characters.
    """
    if not isinstance(path, str) or not path:
        raise BadArgumentsError("Path must be a non-empty string", path=path)
    if not path.startswith("/"):
        raise BadArgumentsError(f"Path must start with '/': {path}", path=path)
    if path == "/":
        if not allow_root:
            raise BadArgumentsError("Root path is not allowed here", path=path)
        return path
    if path.endswith("/"):
        raise BadArgumentsError(f"Path must not end with '/': {path}", path=path)
    if "\x00" in path:
        raise BadArgumentsError("Path must not contain NUL", path=path)
    for segment in path[1:].split("/"):
        if segment in ("", ".", ".."):
            raise BadArgumentsError(f"Invalid path segment {segment!r} in {path}", path=path)
    return path


def validate_sequential_path(path: str) -> str:
    """Sequential prefixes may end with '/', the server appends the counter."""
    if path.endswith("/") and path != "/":
        validate_path(path[:-1])
        return path
    return validate_path(path, allow_root=False)


def parse_sequence(path: str) -> int:
    """Sequence number appended by the server to a sequential node name."""
    suffix = path[-SEQUENCE_DIGITS:]
    if len(suffix) != SEQUENCE_DIGITS or not suffix.lstrip("-").isdigit():
        raise BadArgumentsError(f"No sequence suffix in {path}", path=path)
    return int(suffix)


def validate_config(config: Dict[str, Any], schema: Optional[dict] = None) -> None:
    """Validate a client configuration mapping against the bundled schema."""
    if not schema:
        schema = load_schema("client_config")
    if schema:
        try:
            jsonschema.validate(instance=config, schema=schema)
        except jsonschema.ValidationError as exc:
            raise BadArgumentsError(f"Config validation failed: {exc.message}") from exc


__all__ = ["load_schema", "validate_path", "validate_sequential_path", "parse_sequence", "validate_config"]
