from __future__ import annotations

import re
from pathlib import Path

_ENV_REFERENCE = re.compile(r"\$\{?[A-Za-z_]")


class PathSafetyError(ValueError):
    pass


def _split_prefix(path: str) -> tuple[str, str]:
    if len(path) >= 2 and path[1] == ":":
        if len(path) >= 3 and path[2] == "/":
            return path[:3], path[3:]
        return path[:2], path[2:]
    if path.startswith("/"):
        return "/", path[1:]
    return "", path


def _normalize_segments(remainder: str, *, rooted: bool) -> list[str]:
    output: list[str] = []
    for segment in remainder.split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if output and output[-1] != "..":
                output.pop()
            elif not rooted:
                output.append("..")
            continue
        output.append(segment)
    return output


def normalize_path(raw_path: str) -> str:
    """Return the canonical cache key for ``raw_path``.

    Separators are unified to ``/``, ``.`` and ``..`` segments are collapsed
    lexically (no filesystem access, symlinks are not resolved) and trailing
    separators are dropped. The result is stable under repeated application.
    """
    trimmed = raw_path.strip()
    if not trimmed:
        return trimmed

    cleaned = trimmed.replace("\\", "/")
    prefix, remainder = _split_prefix(cleaned)
    segments = _normalize_segments(remainder, rooted=bool(prefix))
    joined = "/".join(segments)

    if not prefix:
        return joined
    if not joined:
        return prefix
    if prefix.endswith("/"):
        return prefix + joined
    return f"{prefix}/{joined}"


def validate_absolute_path(raw_path: str) -> Path:
    token = raw_path.strip()
    if not token:
        raise PathSafetyError("Path cannot be blank")
    if token.startswith("~"):
        raise PathSafetyError("Home expansion is not allowed")
    if _ENV_REFERENCE.search(token):
        raise PathSafetyError("Environment variable expansion is not allowed")
    path = Path(token)
    if not path.is_absolute():
        raise PathSafetyError("Path must be absolute")
    return Path(normalize_path(token))
