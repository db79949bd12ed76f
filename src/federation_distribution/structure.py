# src/federation_distribution/structure.py

"""
The writable tree that distribution artifacts are assembled from.

A tree is built from four kinds of nodes:

* `File`: a leaf holding bytes, given eagerly or produced lazily from the
  indices stack during `prepare`.
* `FileWithChecksum`: a `File` plus a `<name>.checksum` sidecar holding the
  SHA-256 hex digest of the file's final bytes.
* `Directory`: an inner node owning uniquely named children.
* `Archive`: a leaf on the outside and a container on the inside. Its
  children live in a private staging directory backed by a temporary folder;
  only the resulting ZIP (and optional sidecar) is written under the parent.

Assembly is two-phase. `prepare(indices)` materializes every byte (lazy
content, checksums, ZIP payloads) and is idempotent. `write(target_dir)` is
plain I/O over the frozen bytes. Children are always visited in
lexicographic order of their names, which makes the output of two runs over
the same tree byte-identical.
"""

import abc
import hashlib
import io
import logging
import os
import shutil
import tempfile
import weakref
import zipfile
from contextlib import contextmanager, suppress
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from .exceptions import (
    AssemblyCancelledError,
    AssemblyFailedError,
    AssemblyIOError,
    CyclicStructureError,
    DuplicateNameError,
    ParentReassignedError,
)
from .security import sanitize_entry_name, validate_segment
from .stack import ImmutableStack

logger = logging.getLogger(__name__)

CHECKSUM_SUFFIX = ".checksum"
PART_SUFFIX = ".part"

# 1980-01-01 00:00:00 is the earliest timestamp a ZIP entry can carry.
DEFAULT_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_ZIP_ENTRY_PERMISSIONS = 0o644

ContentProducer = Callable[[ImmutableStack], bytes]


# --- Run-scoped cancellation ---

_ACTIVE_RUN: ContextVar[Optional["AssemblyRun"]] = ContextVar(
    "active_assembly_run", default=None
)


class AssemblyRun:
    """
    Cancellation scope for one assembly pass.

    While a run is active, directories call `checkpoint` before visiting each
    child; once *should_stop* returns True the traversal aborts with
    `AssemblyCancelledError` at that tree boundary.
    """

    def __init__(self, should_stop: Optional[Callable[[], bool]] = None):
        self._should_stop = should_stop

    def checkpoint(self, writable: "Writable") -> None:
        if self._should_stop is not None and self._should_stop():
            logger.warning(
                "Assembly deadline reached. Aborting traversal.",
                extra={"path": writable.path},
            )
            raise AssemblyCancelledError(writable.path)

    @contextmanager
    def activate(self) -> Iterator["AssemblyRun"]:
        token = _ACTIVE_RUN.set(self)
        try:
            yield self
        finally:
            _ACTIVE_RUN.reset(token)


def _checkpoint(writable: "Writable") -> None:
    run = _ACTIVE_RUN.get()
    if run is not None:
        run.checkpoint(writable)


# --- Helpers ---

def _atomic_write(path: Path, data: bytes) -> None:
    """Write *data* to `<path>.part`, fsync it, then rename it onto *path*."""
    part = path.with_name(path.name + PART_SUFFIX)
    try:
        with open(part, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(part, path)
    except OSError as e:
        with suppress(OSError):
            part.unlink()
        raise AssemblyIOError(
            str(path),
            "write",
            context={"errno": e.errno, "strerror": e.strerror},
        ) from e


def build_zip(staging_root: Path, date_time: tuple = DEFAULT_ZIP_DATE_TIME) -> bytes:
    """
    Zip every regular file below *staging_root* into a deterministic archive.

    Entries are sorted by their forward-slash path relative to the root,
    stored uncompressed with a fixed timestamp, a fixed "FAT" creator and
    fixed 0644 permissions. Directories get no entries of their own.
    """
    entries = sorted(
        (sanitize_entry_name(path.relative_to(staging_root).as_posix()), path)
        for path in staging_root.rglob("*")
        if path.is_file()
    )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
        for entry_name, path in entries:
            info = zipfile.ZipInfo(filename=entry_name, date_time=date_time)
            info.compress_type = zipfile.ZIP_STORED
            info.create_system = 0
            info.external_attr = (_ZIP_ENTRY_PERMISSIONS & 0xFFFF) << 16
            zf.writestr(info, path.read_bytes())
    return buffer.getvalue()


class ChecksumSidecar:
    """The `<name>.checksum` companion of a file; lowercase SHA-256 hex, no newline."""

    def __init__(self, name: str):
        self.name = validate_segment(name + CHECKSUM_SUFFIX)
        self._digest: str | None = None

    @property
    def digest(self) -> str | None:
        return self._digest

    def update(self, data: bytes) -> None:
        self._digest = hashlib.sha256(data).hexdigest()

    def write(self, target_dir: Path) -> None:
        if self._digest is None:
            raise RuntimeError(f"Checksum for '{self.name}' was never computed")
        _atomic_write(target_dir / self.name, self._digest.encode("ascii"))


# --- Writables ---

class Writable(abc.ABC):
    """A named node of the assembly tree."""

    def __init__(self, name: str):
        self._name = validate_segment(name)
        self._parent_ref: Optional[weakref.ref] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> Optional["Directory"]:
        return self._parent_ref() if self._parent_ref is not None else None

    def set_parent(self, parent: "Directory") -> None:
        current = self.parent
        if current is parent:
            return
        if current is not None:
            raise ParentReassignedError(self.name, current.path, parent.path)
        self._parent_ref = weakref.ref(parent)

    @property
    def output_names(self) -> tuple[str, ...]:
        """Names this node writes into its parent's directory."""
        return (self.name,)

    def _logical_parent(self) -> Optional["Writable"]:
        return self.parent

    def _path_segment(self) -> Optional[str]:
        return self.name

    @property
    def path(self) -> str:
        """Forward-slash path from the tree root, through enclosing archives."""
        segments = []
        node: Optional[Writable] = self
        while node is not None:
            segment = node._path_segment()
            if segment is not None:
                segments.append(segment)
            node = node._logical_parent()
        return "/".join(reversed(segments))

    def ancestors(self) -> Iterator["Writable"]:
        node = self._logical_parent()
        while node is not None:
            yield node
            node = node._logical_parent()

    @abc.abstractmethod
    def prepare(self, indices: ImmutableStack) -> None:
        """Materialize all bytes of this node. Calling it again is a no-op."""

    @abc.abstractmethod
    def write(self, target_dir: Path) -> None:
        """Serialize this node into *target_dir*, the physical directory of the parent."""

    def cleanup(self) -> None:
        """Release resources held by this node."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"


class File(Writable):
    """A leaf carrying bytes."""

    def __init__(self, name: str, content: Union[bytes, ContentProducer] = b""):
        super().__init__(name)
        if callable(content):
            self._producer: Optional[ContentProducer] = content
            self._content: Optional[bytes] = None
        else:
            self._producer = None
            self._content = bytes(content)

    @property
    def is_prepared(self) -> bool:
        return self._content is not None

    @property
    def content(self) -> bytes:
        if self._content is None:
            raise RuntimeError(f"Content of '{self.path}' is produced lazily; prepare it first")
        return self._content

    def prepare(self, indices: ImmutableStack) -> None:
        if self._content is not None:
            return
        produced = self._producer(indices)
        if not isinstance(produced, (bytes, bytearray)):
            raise TypeError(
                f"Content producer for '{self.name}' returned {type(produced).__name__}, expected bytes"
            )
        self._content = bytes(produced)
        self._producer = None

    def write(self, target_dir: Path) -> None:
        _atomic_write(target_dir / self.name, self.content)


class FileWithChecksum(Writable):
    """A `File` whose output is accompanied by a `<name>.checksum` sidecar."""

    def __init__(self, name: str, content: Union[bytes, ContentProducer] = b""):
        super().__init__(name)
        self._file = File(name, content)
        self._sidecar = ChecksumSidecar(name)

    @property
    def content(self) -> bytes:
        return self._file.content

    @property
    def checksum(self) -> str | None:
        return self._sidecar.digest

    @property
    def output_names(self) -> tuple[str, ...]:
        return (self.name, self._sidecar.name)

    def prepare(self, indices: ImmutableStack) -> None:
        if self._sidecar.digest is not None:
            return
        self._file.prepare(indices)
        self._sidecar.update(self._file.content)

    def write(self, target_dir: Path) -> None:
        self._file.write(target_dir)
        self._sidecar.write(target_dir)


class Directory(Writable):
    """
    An inner node whose children have unique names.

    When *index* is given it is pushed onto the indices stack handed to the
    children, which lets lazy files below this directory see e.g. the date or
    country they are being built for.
    """

    def __init__(self, name: str, index: Any = None):
        super().__init__(name)
        self._index = index
        self._children: dict[str, Writable] = {}
        self._owner_ref: Optional[weakref.ref] = None
        self._prepared = False

    @property
    def index(self) -> Any:
        return self._index

    def _logical_parent(self) -> Optional[Writable]:
        if self._owner_ref is not None:
            return self._owner_ref()
        return self.parent

    def _path_segment(self) -> Optional[str]:
        # The staging root of an archive is represented by the archive itself.
        return None if self._owner_ref is not None else self.name

    def add_writable(self, writable: Writable) -> None:
        taken = {name for child in self._children.values() for name in child.output_names}
        for name in writable.output_names:
            if name in taken:
                raise DuplicateNameError(self.path, name)
        if writable is self or any(node is writable for node in self.ancestors()):
            raise CyclicStructureError(self.path, writable.name)
        writable.set_parent(self)
        self._children[writable.name] = writable

    def get_writables(self) -> set[Writable]:
        return set(self._children.values())

    def get(self, name: str) -> Optional[Writable]:
        return self._children.get(name)

    def sorted_writables(self) -> list[Writable]:
        return [self._children[name] for name in sorted(self._children)]

    def child_indices(self, indices: ImmutableStack) -> ImmutableStack:
        return indices if self._index is None else indices.push(self._index)

    def prepare(self, indices: ImmutableStack) -> None:
        if self._prepared:
            return
        child_indices = self.child_indices(indices)
        for child in self.sorted_writables():
            _checkpoint(child)
            try:
                child.prepare(child_indices)
            except AssemblyCancelledError:
                raise
            except AssemblyFailedError as e:
                raise e.prefixed(child.name) from e.cause
            except Exception as e:
                raise AssemblyFailedError(child.name, e) from e
        self._prepared = True

    def write_children(self, physical_dir: Path) -> None:
        for child in self.sorted_writables():
            _checkpoint(child)
            child.write(physical_dir)

    def write(self, target_dir: Path) -> None:
        physical_dir = target_dir / self.name
        try:
            physical_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AssemblyIOError(
                str(physical_dir),
                "mkdir",
                context={"errno": e.errno, "strerror": e.strerror},
            ) from e
        self.write_children(physical_dir)

    def cleanup(self) -> None:
        for child in self._children.values():
            child.cleanup()


class Archive(Writable):
    """
    A ZIP file assembled from a private staging directory.

    The staging directory is created in a fresh temporary folder when the
    archive is constructed and is removed by `cleanup()`, or when the archive
    is garbage collected. Children added to the archive are only reachable
    through it; the parent directory sees the ZIP bytes alone.
    """

    def __init__(
        self,
        name: str,
        *,
        checksum: bool = False,
        date_time: tuple = DEFAULT_ZIP_DATE_TIME,
        temp_root: Optional[str] = None,
    ):
        super().__init__(name)
        self._date_time = tuple(date_time)
        try:
            self._temp_dir = Path(tempfile.mkdtemp(prefix="archive-", dir=temp_root))
        except OSError as e:
            raise AssemblyIOError(
                str(temp_root or tempfile.gettempdir()),
                "mkdtemp",
                context={"archive": name, "errno": e.errno, "strerror": e.strerror},
            ) from e
        self._finalizer = weakref.finalize(
            self, shutil.rmtree, str(self._temp_dir), ignore_errors=True
        )
        self._staging = Directory(name)
        self._staging._owner_ref = weakref.ref(self)
        self._sidecar = ChecksumSidecar(name) if checksum else None
        self._content: Optional[bytes] = None

    @property
    def staging_path(self) -> Path:
        return self._temp_dir

    @property
    def content(self) -> bytes:
        if self._content is None:
            raise RuntimeError(f"Archive '{self.path}' has not been prepared")
        return self._content

    @property
    def checksum(self) -> str | None:
        return self._sidecar.digest if self._sidecar is not None else None

    @property
    def output_names(self) -> tuple[str, ...]:
        if self._sidecar is None:
            return (self.name,)
        return (self.name, self._sidecar.name)

    def add_writable(self, writable: Writable) -> None:
        self._staging.add_writable(writable)

    def get_writables(self) -> set[Writable]:
        return self._staging.get_writables()

    def get(self, name: str) -> Optional[Writable]:
        return self._staging.get(name)

    def prepare(self, indices: ImmutableStack) -> None:
        if self._content is not None:
            return
        if not self._finalizer.alive:
            raise RuntimeError(f"Archive '{self.path}' was already cleaned up")
        self._staging.prepare(indices)
        self._staging.write_children(self._temp_dir)
        try:
            self._content = build_zip(self._temp_dir, self._date_time)
        except OSError as e:
            raise AssemblyIOError(
                str(self._temp_dir),
                "zip",
                context={"archive": self.path, "errno": e.errno, "strerror": e.strerror},
            ) from e
        if self._sidecar is not None:
            self._sidecar.update(self._content)
        logger.debug(
            "Archive prepared",
            extra={
                "archive": self.path,
                "size_bytes": len(self._content),
                "checksum": self.checksum,
            },
        )

    def write(self, target_dir: Path) -> None:
        _atomic_write(target_dir / self.name, self.content)
        if self._sidecar is not None:
            self._sidecar.write(target_dir)

    def cleanup(self) -> None:
        self._staging.cleanup()
        self._finalizer()

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()
