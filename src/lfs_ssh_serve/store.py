"""Content-addressed object store on the local filesystem.

Objects are stored by oid below a per-repository scope directory, sharded on
the first four hex characters so no directory ever holds more than 256
entries of the next level:

    <base_path>/<repo_scope>/ab/cd/<full oid>

Key Features:
- Publication is temp file + ``os.replace`` in the same directory; the rename
  is the only point at which an object becomes visible
- Objects are made read-only (0o444) before the rename
- Existence and size checks never touch the filesystem beyond a stat
- Shard directories inherit permission bits from the nearest existing ancestor

Technical Considerations:
- There is no locking. Two sessions publishing the same oid both rename
  complete files over the same path; since the path is the content hash, the
  last rename wins with identical bytes.
- Staging files use a hidden prefix and are removed on any failure
"""

from __future__ import annotations
import contextlib
import logging
import os
import re
import stat
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from .constants import DEFAULT_DIR_MODE, OBJECT_FILE_MODE, STAGING_PREFIX
from .errors import InvalidOidError, PublishError

logger = logging.getLogger(__name__)

# ---- Platform-specific helpers ---------------------------------------------

def _fsync_dir(path: Path) -> None:
    """Fsync a directory to ensure directory entry updates are durable.

    This is a best-effort operation that may not work on all platforms/filesystems.
    """
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY

        fd = os.open(str(path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", path)


def _inherited_mode(path: Path) -> int:
    """Permission bits of the nearest existing ancestor of ``path``."""
    for candidate in (path, *path.parents):
        try:
            return stat.S_IMODE(candidate.stat().st_mode)
        except FileNotFoundError:
            continue
        except OSError:
            break
    return DEFAULT_DIR_MODE


def make_dirs(path: Path) -> None:
    """Create ``path`` and any missing parents, never failing on existence.

    Each directory this call creates is given the mode of the nearest
    ancestor that already existed. Directories created concurrently by
    another session are left alone.
    """
    if path.is_dir():
        return

    mode = _inherited_mode(path)
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent

    for directory in reversed(missing):
        try:
            os.mkdir(directory, mode)
        except FileExistsError:
            continue
        # mkdir is filtered through the umask; apply the inherited bits exactly
        os.chmod(directory, mode)

# ---- Safety validators ------------------------------------------------------

_HEX_OID = re.compile(r"^[0-9a-f]{4,}$")

def validate_oid(oid: str) -> str:
    """Validate an oid before it is used to build a path.

    Args:
        oid: Lower-case hex content hash

    Returns:
        The oid unchanged

    Raises:
        InvalidOidError: If oid is too short or not lower-case hex

    Security:
        Rejecting anything but hex prevents path traversal via the oid.
    """
    if not isinstance(oid, str) or not _HEX_OID.fullmatch(oid):
        raise InvalidOidError(str(oid))
    return oid

# ---- Staging ----------------------------------------------------------------

class StagedObject:
    """A not-yet-visible object being written next to its final path.

    Created by ``ContentStore.staging``. Write the payload to ``file`` and
    call ``publish`` to make it visible; otherwise the staging context
    removes it.
    """

    def __init__(self, oid: str, final_path: Path, tmp: BinaryIO):
        self.oid = oid
        self.final_path = final_path
        self.file = tmp
        self.tmp_path = Path(tmp.name)
        self.published = False

    def publish(self) -> Path:
        """Atomically move the staged file onto its final path.

        Returns:
            The final object path

        Raises:
            PublishError: If flushing, chmod or the rename fails
        """
        try:
            self.file.flush()
            os.fsync(self.file.fileno())
            self.file.close()

            # Read-only from the moment it becomes visible
            os.chmod(self.tmp_path, OBJECT_FILE_MODE)
            os.replace(str(self.tmp_path), str(self.final_path))
        except OSError as e:
            raise PublishError(self.oid, e) from e

        self.published = True
        _fsync_dir(self.final_path.parent)
        logger.debug("Published: %s", self.final_path)
        return self.final_path

    def discard(self) -> None:
        """Close and remove the staging file unless it was published."""
        with contextlib.suppress(OSError):
            self.file.close()
        if not self.published:
            with contextlib.suppress(OSError):
                self.tmp_path.unlink()

# ---- ContentStore -----------------------------------------------------------

class ContentStore:
    """Content-addressed object store scoped to one repository.

    Attributes:
        base_path: Storage root shared by all repositories
        repo_scope: Relative sub-path isolating one repository's objects
        objdir: ``base_path / repo_scope``
    """

    def __init__(self, base_path: Union[str, Path], repo_scope: Union[str, Path]):
        self.base_path = Path(base_path)
        self.repo_scope = Path(repo_scope)
        # Absolute scopes are still stored under base_path
        scope = self.repo_scope
        if scope.is_absolute():
            scope = scope.relative_to(scope.anchor)
        self.objdir = self.base_path / scope

    def path_for(self, oid: str) -> Path:
        """Get storage path for an oid. Has no filesystem side effects.

        Raises:
            InvalidOidError: If oid format is invalid
        """
        oid = validate_oid(oid)
        return self.objdir / oid[0:2] / oid[2:4] / oid

    def size_of(self, oid: str) -> Optional[int]:
        """Size of a stored object, or None if it is not present."""
        try:
            st = self.path_for(oid).stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        return st.st_size

    def exists(self, oid: str) -> bool:
        return self.size_of(oid) is not None

    def open_object(self, oid: str) -> BinaryIO:
        """Open a stored object for reading.

        Raises:
            FileNotFoundError: If object is not present
        """
        return self.path_for(oid).open("rb")

    @contextlib.contextmanager
    def staging(self, oid: str) -> Iterator[StagedObject]:
        """Open a private staging file for ``oid``.

        The shard directories are created here (not by checks). Each call
        gets a uniquely named file, so concurrent uploads of the same oid
        never share staging space.

        Raises:
            InvalidOidError: If oid format is invalid
            OSError: If directories or the staging file cannot be created
        """
        dst = self.path_for(oid)
        make_dirs(dst.parent)

        tmp = tempfile.NamedTemporaryFile(
            prefix=STAGING_PREFIX,
            suffix=".tmp",
            dir=str(dst.parent),
            delete=False,
        )
        staged = StagedObject(oid, dst, tmp)
        try:
            yield staged
        finally:
            staged.discard()
