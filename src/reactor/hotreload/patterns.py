"""Glob matching for watch, build-trigger and sync patterns.

Paths are POSIX strings relative to the watched root. Supported forms:

- ``*.log``         no slash: matched against the basename
- ``node_modules/`` trailing slash: matches any path below a directory
                    of that name (or the directory itself)
- ``src/**/*.go``   slash: matched against the whole relative path, where
                    ``**`` spans any number of directories (including none)
- ``*.{js,ts}``     brace alternatives
"""

import fnmatch
import re
from collections.abc import Iterable
from functools import lru_cache

_BRACE_RE = re.compile(r"\{([^{}]*)\}")


@lru_cache(maxsize=512)
def expand_braces(pattern: str) -> tuple[str, ...]:
    """Expand ``{a,b}`` alternatives into separate patterns."""
    match = _BRACE_RE.search(pattern)
    if not match:
        return (pattern,)

    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return tuple(expanded)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    """Translate a path glob into a regex, treating ``/`` as a separator."""
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape("["))
                i += 1
            else:
                body = pattern[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = end + 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def _match_single(path: str, pattern: str, is_dir: bool) -> bool:
    if pattern.endswith("/"):
        name = pattern.rstrip("/")
        components = path.split("/")
        # A file's own name is not a directory component
        candidates = components if is_dir else components[:-1]
        if "/" in name:
            return path == name or path.startswith(name + "/")
        return any(fnmatch.fnmatchcase(part, name) for part in candidates)

    if "/" not in pattern:
        basename = path.rsplit("/", 1)[-1]
        return fnmatch.fnmatchcase(basename, pattern)

    return _compile(pattern.lstrip("/")).match(path) is not None


def matches(path: str, pattern: str, is_dir: bool = False) -> bool:
    """Check whether a relative POSIX path matches a single pattern."""
    path = path.strip("/")
    return any(_match_single(path, alt, is_dir) for alt in expand_braces(pattern))


def matches_any(path: str, patterns: Iterable[str], is_dir: bool = False) -> bool:
    """Check whether a relative path matches any of the patterns."""
    return any(matches(path, pattern, is_dir) for pattern in patterns)


def is_included(
    path: str,
    include_patterns: Iterable[str],
    exclude_patterns: Iterable[str],
    is_dir: bool = False,
) -> bool:
    """Apply include patterns, then exclude patterns. Exclude wins.

    An empty include list includes everything.
    """
    if matches_any(path, exclude_patterns, is_dir):
        return False
    include = list(include_patterns)
    if not include:
        return True
    return matches_any(path, include, is_dir)
