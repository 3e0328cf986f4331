from __future__ import annotations

import logging
import os
import posixpath
from enum import Enum

from ..errors import PathEscapesRoot

logger = logging.getLogger(__name__)


class ConfinementPolicy(str, Enum):
    REJECT = 'reject'
    FALLBACK = 'fallback'


class PathResolver:
    """Maps untrusted client paths onto locations inside a fixed root.

    Resolution is purely lexical: ``.`` and ``..`` segments are collapsed
    without touching the filesystem, and the result is not required to exist.
    A path that would leave the root either raises ``PathEscapesRoot``
    (``reject``) or is replaced by the root itself (``fallback``).
    """

    pathmod = os.path

    def __init__(self, root: str, policy: ConfinementPolicy | str = ConfinementPolicy.REJECT):
        if not self.pathmod.isabs(root):
            raise ValueError(f'Root boundary must be absolute, got {root!r}')
        self.root = self.pathmod.normpath(root)
        self.policy = ConfinementPolicy(policy)

    def resolve(self, user_path: str | None) -> str:
        p = self.pathmod
        # leading separators mean root-relative, never an absolute override
        relative = p.normpath((user_path or '').lstrip(p.sep) or p.curdir)
        if relative == p.pardir or relative.startswith(p.pardir + p.sep):
            return self._escaped(user_path)

        candidate = p.normpath(p.join(self.root, relative))
        if not self.contains(candidate):
            return self._escaped(user_path)
        return candidate

    def contains(self, path: str) -> bool:
        sep = self.pathmod.sep
        return path == self.root or path.startswith(self.root.rstrip(sep) + sep)

    def relativize(self, path: str) -> str:
        p = self.pathmod
        rel = p.relpath(path, self.root)
        if rel == p.curdir:
            return '/'
        return '/' + rel.replace(p.sep, '/')

    def is_root(self, path: str) -> bool:
        return self.pathmod.normpath(path) == self.root

    def _escaped(self, user_path: str | None) -> str:
        if self.policy is ConfinementPolicy.FALLBACK:
            logger.warning('Path %r escapes the storage root; using the root instead', user_path)
            return self.root
        raise PathEscapesRoot(user_path or '')


class RepoPathResolver(PathResolver):
    """Resolver over the virtual root of a remote repository tree."""

    pathmod = posixpath

    def __init__(self, policy: ConfinementPolicy | str = ConfinementPolicy.REJECT):
        super().__init__('/', policy)

    def repo_path(self, resolved: str) -> str:
        return resolved.lstrip('/')


def join_user_path(directory: str | None, name: str) -> str:
    return f"{directory or ''}/{name}"


def resolve_path(root: str, user_path: str | None, policy: ConfinementPolicy | str = ConfinementPolicy.REJECT) -> str:
    return PathResolver(root, policy).resolve(user_path)


def relativize_path(root: str, path: str) -> str:
    return PathResolver(root).relativize(path)
