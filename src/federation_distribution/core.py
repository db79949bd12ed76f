# src/federation_distribution/core.py

"""
Core logic for assembling and publishing distribution artifacts.

`Assembler.assemble` runs the two passes over a writable tree: `prepare`
materializes every byte (lazy files, checksums, ZIP payloads), `write`
places the frozen bytes under the output root. Files are published
atomically (`*.part` then rename), temporary archive staging folders are
released on every exit path, and leftover `*.part` files are swept when a
run fails.

`publish_output` then uploads the finished tree to the distribution bucket.
"""

import hashlib
import logging
import mimetypes
import shutil
from pathlib import Path
from typing import Callable, Iterator

from .clients import S3Client
from .exceptions import (
    AssemblyFailedError,
    AssemblyIOError,
    FederationDistributionError,
    PublishError,
)
from .stack import ImmutableStack
from .structure import CHECKSUM_SUFFIX, PART_SUFFIX, AssemblyRun, Writable

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    ".zip": "application/zip",
    ".json": "application/json",
    CHECKSUM_SUFFIX: "text/plain",
}


class Assembler:
    """
    Drives one assembly run of a writable tree into *output_root*.
    """

    def __init__(self, output_root: Path, should_stop: Callable[[], bool] | None = None):
        self._output_root = Path(output_root)
        self._should_stop = should_stop

    @property
    def output_root(self) -> Path:
        return self._output_root

    def assemble(self, root: Writable, indices: ImmutableStack | None = None) -> Path:
        """
        Prepare and write *root*; returns the physical path of the root.
        """
        run = AssemblyRun(self._should_stop)
        indices = indices if indices is not None else ImmutableStack.empty()
        try:
            with run.activate():
                logger.debug("Preparing writable tree.", extra={"root": root.path})
                try:
                    root.prepare(indices)
                except FederationDistributionError:
                    raise
                except Exception as e:
                    raise AssemblyFailedError(root.name, e) from e

                try:
                    self._output_root.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise AssemblyIOError(
                        str(self._output_root),
                        "mkdir",
                        context={"errno": e.errno, "strerror": e.strerror},
                    ) from e

                logger.debug("Writing writable tree.", extra={"root": root.path})
                root.write(self._output_root)
        except Exception:
            discard_output(self._output_root, root.output_names)
            removed = remove_partial_files(self._output_root)
            if removed:
                logger.warning(
                    "Removed partial output after failed assembly.",
                    extra={"removed_files": [str(p) for p in removed]},
                )
            raise
        finally:
            root.cleanup()

        target = self._output_root / root.name
        logger.info("Assembly completed", extra={"root": str(target)})
        return target


def discard_output(output_root: Path, names: tuple[str, ...]) -> None:
    """Remove what a failed root wrote directly under *output_root*."""
    for name in names:
        target = output_root / name
        if target.is_dir():
            shutil.rmtree(target, ignore_errors=True)
        else:
            target.unlink(missing_ok=True)
    logger.debug("Discarded output of failed assembly.", extra={"names": list(names)})


def remove_partial_files(output_root: Path) -> list[Path]:
    """Delete every `*.part` file below *output_root*."""
    if not output_root.exists():
        return []
    removed = []
    for part in output_root.rglob(f"*{PART_SUFFIX}"):
        if part.is_file():
            part.unlink()
            removed.append(part)
    return removed


def iter_output_files(root_dir: Path) -> Iterator[Path]:
    """Finished files below *root_dir*, in lexicographic order of their paths."""
    files = (
        p for p in root_dir.rglob("*") if p.is_file() and not p.name.endswith(PART_SUFFIX)
    )
    yield from sorted(files, key=lambda p: p.relative_to(root_dir).as_posix())


def _content_type(path: Path) -> str:
    if path.suffix in _CONTENT_TYPES:
        return _CONTENT_TYPES[path.suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def publish_output(
    s3_client: S3Client,
    output_root: Path,
    root_dir: Path,
    bucket: str,
) -> list[str]:
    """
    Upload every file below *root_dir* to *bucket*, keyed by its path
    relative to *output_root*. Returns the uploaded keys.

    Checksum sidecars are uploaded after the file they describe, so a
    consumer never sees a checksum for a file that is not there yet.
    """
    uploaded: list[str] = []
    files = sorted(
        iter_output_files(root_dir),
        key=lambda p: (p.name.endswith(CHECKSUM_SUFFIX), p.relative_to(root_dir).as_posix()),
    )
    for path in files:
        key = path.relative_to(output_root).as_posix()
        try:
            content_hash = hashlib.sha256(path.read_bytes()).hexdigest()
        except OSError as e:
            raise PublishError(f"Cannot read {path}", context={"key": key}) from e
        s3_client.upload_file(
            bucket=bucket,
            key=key,
            file_path=path,
            content_hash=content_hash,
            content_type=_content_type(path),
        )
        uploaded.append(key)

    logger.info(
        "Successfully published distribution",
        extra={"bucket": bucket, "uploaded_count": len(uploaded)},
    )
    return uploaded
