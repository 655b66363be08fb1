"""Confines client supplied paths to the server root.

Every path accepted from a client goes through resolvePath() (or
resolveParentPath() for paths that do not exist yet). Client paths are always
interpreted relative to the server root: an absolute client path has its root
stripped before it is joined onto the server root.
"""
from pathlib import Path, PurePosixPath
from typing import Union

from _exceptions import PathNotFoundError, PermissionDeniedPathError


ClientPath = Union[str, PurePosixPath]


def stripClientRoot(clientPath: ClientPath) -> PurePosixPath:
    ## No filesystem call accepts an embedded NUL
    if "\x00" in str(clientPath):
        raise PathNotFoundError(str(clientPath))

    path = PurePosixPath(clientPath)
    if path.is_absolute():
        return path.relative_to(path.anchor)
    return path


def canonicalRoot(serverRoot: str) -> Path:
    try:
        return Path(serverRoot).resolve(strict=True)
    except (OSError, RuntimeError):
        raise PathNotFoundError("/")


def isWithinRoot(path: Path, root: Path) -> bool:
    ## NOTE: Component-wise comparison, "/srv/ftp2" is not below "/srv/ftp"
    return path == root or root in path.parents


def resolvePath(clientPath: ClientPath, serverRoot: str) -> str:
    """Returns the canonical filesystem path of `clientPath` under `serverRoot`.

    Raises PathNotFoundError when the path does not exist and
    PermissionDeniedPathError when its canonical form lies outside the root
    (e.g. `../../etc/passwd`, or a symlink pointing out of the root)."""
    root = canonicalRoot(serverRoot)
    joined = root / stripClientRoot(clientPath)

    try:
        ## RuntimeError is raised for symlink loops on older interpreters
        canonical = joined.resolve(strict=True)
    except (OSError, RuntimeError, ValueError):
        raise PathNotFoundError(str(clientPath))

    if not isWithinRoot(canonical, root):
        raise PermissionDeniedPathError(str(clientPath), str(root))

    return str(canonical)


def resolveParentPath(clientPath: ClientPath, serverRoot: str) -> str:
    """Resolves the parent directory of a path that is about to be created.

    The parent is canonicalized and checked against the root, the leaf name is
    then appended as-is since it does not exist yet."""
    path = stripClientRoot(clientPath)
    leaf = path.name
    if leaf in ("", ".", ".."):
        raise PermissionDeniedPathError(str(clientPath), serverRoot)

    parent = Path(resolvePath(path.parent, serverRoot))
    if not parent.is_dir():
        raise PathNotFoundError(str(clientPath))

    return str(parent / leaf)


def toSessionPath(realPath: str, serverRoot: str) -> PurePosixPath:
    """Maps a resolved filesystem path back to its root-relative form (`/` for the root)"""
    root = canonicalRoot(serverRoot)
    relative = Path(realPath).relative_to(root)
    return PurePosixPath("/") / relative.as_posix()
