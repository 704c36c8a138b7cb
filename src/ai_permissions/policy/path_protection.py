"""
Path protection for the AI Permissions Layer.

A hard-coded layer that runs before any compiled rule: a tool that can
write files is never allowed to target a protected path. The defaults
protect the rules files and the layer's own config directory, so an agent
cannot rewrite its own permissions.

Glob semantics:
    - ``**`` as a whole segment matches zero or more path segments
    - ``*``, ``?`` and ``[...]`` match within a single segment
    - Dot-segments are ordinary segments (``**`` crosses ``.config``)
    - Matching is case-sensitive
"""

import glob
from collections.abc import Iterable
from fnmatch import fnmatchcase
from functools import lru_cache
from pathlib import Path
from typing import Any

from ai_permissions.schema import (
    DEFAULT_DANGEROUS_TOOLS,
    DEFAULT_PROTECTED_PATTERNS,
    OPENCLAW_DANGEROUS_TOOLS,
    PathProtectionConfig,
    ToolCall,
)

PROTECTED_PATH_REASON = "Protected path: rules cannot be modified by agent"

# Argument keys checked, in order, for the target path
PATH_KEYS = ("path", "file_path", "filePath", "filename")

__all__ = [
    "DEFAULT_DANGEROUS_TOOLS",
    "DEFAULT_PROTECTED_PATTERNS",
    "OPENCLAW_DANGEROUS_TOOLS",
    "PATH_KEYS",
    "PROTECTED_PATH_REASON",
    "extract_path",
    "glob_match",
    "is_protected_path_violation",
    "protect_files",
    "protected_file_patterns",
]


def extract_path(args: dict[str, Any]) -> str | None:
    """
    Return the first string value among the known path keys.

    Non-string values are skipped, so ``{"path": 3, "filename": "a"}``
    yields ``"a"``.
    """
    for key in PATH_KEYS:
        value = args.get(key)
        if isinstance(value, str):
            return value
    return None


def glob_match(path: str, pattern: str) -> bool:
    """
    Check whether a forward-slash path matches a glob pattern.

    Examples:
        glob_match("/home/u/.config/ai-permissions-layer/x", "**/.config/ai-permissions-layer/**") -> True
        glob_match("a/rules.json", "**/rules*.json") -> True
        glob_match("a/b/c.txt", "a/*.txt") -> False
    """
    return _match_parts(tuple(path.split("/")), _split_pattern(pattern))


def is_protected_path_violation(tool_call: ToolCall, config: PathProtectionConfig) -> bool:
    """
    Check whether a dangerous tool is targeting a protected path.

    Args:
        tool_call: The candidate call
        config: Dangerous tools and protected patterns

    Returns:
        True iff the tool is dangerous and its path matches any pattern
    """
    if tool_call.tool_name not in config.dangerous_tools:
        return False

    path = extract_path(tool_call.args)
    if not path:
        return False

    normalized = path.replace("\\", "/")
    return any(glob_match(normalized, pattern) for pattern in config.protected_patterns)


def protected_file_patterns(path: Path | str, tail: int = 1) -> tuple[str, ...]:
    """
    Build literal glob patterns that cover one specific file.

    The file is matched by its absolute (and symlink-resolved) location and,
    for relative or ``~`` spellings, by its last ``tail`` segments anywhere
    in a path. Glob metacharacters in the name are escaped.

    Examples:
        protected_file_patterns("/home/u/.openclaw/ai-permissions-rules.json")
            -> ("/home/u/.openclaw/ai-permissions-rules.json", "**/ai-permissions-rules.json")
        protected_file_patterns("/etc/perm/config.yaml", tail=2)
            -> ("/etc/perm/config.yaml", "**/perm/config.yaml")
    """
    path = Path(path).expanduser()
    patterns: list[str] = []
    for candidate in (path.absolute(), path.resolve()):
        pattern = glob.escape(candidate.as_posix())
        if pattern not in patterns:
            patterns.append(pattern)

    segments = [part for part in path.absolute().as_posix().split("/") if part][-tail:]
    patterns.append("/".join(["**", *(glob.escape(part) for part in segments)]))
    return tuple(patterns)


def protect_files(
    config: PathProtectionConfig,
    paths: Iterable[tuple[Path | str, int]],
) -> PathProtectionConfig:
    """Return ``config`` with patterns added for each ``(path, tail)`` pair."""
    patterns = list(config.protected_patterns)
    for path, tail in paths:
        for pattern in protected_file_patterns(path, tail):
            if pattern not in patterns:
                patterns.append(pattern)
    return config.model_copy(update={"protected_patterns": tuple(patterns)})


@lru_cache(maxsize=256)
def _split_pattern(pattern: str) -> tuple[str, ...]:
    parts: list[str] = []
    for part in pattern.replace("\\", "/").split("/"):
        # a/**/**/b is the same as a/**/b
        if part == "**" and parts and parts[-1] == "**":
            continue
        parts.append(part)
    return tuple(parts)


def _match_parts(path_parts: tuple[str, ...], pattern_parts: tuple[str, ...]) -> bool:
    if not pattern_parts:
        return not path_parts

    head, rest = pattern_parts[0], pattern_parts[1:]

    if head == "**":
        # Globstar: consume zero or more path segments
        return any(_match_parts(path_parts[i:], rest) for i in range(len(path_parts) + 1))

    if not path_parts:
        return False

    return fnmatchcase(path_parts[0], head) and _match_parts(path_parts[1:], rest)
