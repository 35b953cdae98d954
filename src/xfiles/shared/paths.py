"""Allow-list path validation.

Every path-bearing field of every request goes through PathValidator before
the filesystem is touched, so no operation can reach storage outside the
configured roots, even transiently.
"""

import os
from collections.abc import Iterable

from xfiles.shared.exceptions import AccessDeniedError


def canonicalize(path: str) -> str:
    """Strip NUL bytes and collapse the path into absolute, normalized form.

    Relative paths resolve against the process working directory. Symlinks
    are not resolved.
    """
    cleaned = path.replace("\0", "")
    return os.path.normpath(os.path.abspath(cleaned))


def is_within(path: str, root: str) -> bool:
    """True if canonical ``path`` is ``root`` itself or one of its descendants."""
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


class PathValidator:
    """Resolves input paths and rejects those outside the allow-listed roots."""

    def __init__(self, allowed_roots: Iterable[str]):
        self._roots = tuple(canonicalize(root) for root in allowed_roots)

    @property
    def roots(self) -> tuple[str, ...]:
        return self._roots

    def is_allowed(self, path: str) -> bool:
        canonical = canonicalize(path)
        return any(is_within(canonical, root) for root in self._roots)

    def validate(self, path: str) -> str:
        """Return the canonical form of ``path`` if it is allow-listed.

        Raises:
            AccessDeniedError: If the path falls outside every root.
        """
        canonical = canonicalize(path)
        if not any(is_within(canonical, root) for root in self._roots):
            raise AccessDeniedError(path)
        return canonical
