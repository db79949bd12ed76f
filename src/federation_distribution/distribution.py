"""
Distribution layout for the batches downloaded for one day.

    <prefix>/diagnosis-keys/date/<YYYY-MM-DD>/index.zip
    <prefix>/diagnosis-keys/date/<YYYY-MM-DD>/index.zip.checksum

``index.zip`` holds one ``batches/<seq>-<tag>.bin`` entry per non-empty
batch, in gateway order, and an ``index.json`` rendered during `prepare`
from the date the enclosing directory pushes onto the indices stack.
"""

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Iterable

from .schemas import BatchDownloadResponse
from .security import batch_file_name
from .stack import ImmutableStack
from .structure import DEFAULT_ZIP_DATE_TIME, Archive, Directory, File

ARCHIVE_NAME = "index.zip"
INDEX_FILE_NAME = "index.json"
BATCHES_DIRECTORY_NAME = "batches"


@dataclass
class DayDistribution:
    """The tree for one day plus the bookkeeping the caller reports on."""

    root: Directory
    archive: Archive
    batch_tags: list[str] = field(default_factory=list)
    empty_batch_tags: list[str] = field(default_factory=list)

    @property
    def batch_count(self) -> int:
        return len(self.batch_tags)


def _render_index(batch_tags: list[str], empty_batch_tags: list[str]):
    def produce(indices: ImmutableStack) -> bytes:
        day = indices.peek()
        document = {
            "date": day.isoformat(),
            "batchTags": batch_tags,
            "emptyBatchTags": empty_batch_tags,
        }
        return json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")

    return produce


def build_day_distribution(
    date: dt.date,
    responses: Iterable[BatchDownloadResponse],
    *,
    prefix: str = "",
    date_time: tuple = DEFAULT_ZIP_DATE_TIME,
    temp_root: str | None = None,
) -> DayDistribution:
    """Consume *responses* and build the writable tree for *date*."""
    archive = Archive(ARCHIVE_NAME, checksum=True, date_time=date_time, temp_root=temp_root)
    batches = Directory(BATCHES_DIRECTORY_NAME)
    archive.add_writable(batches)

    distribution = DayDistribution(root=Directory("diagnosis-keys"), archive=archive)
    for sequence, response in enumerate(responses):
        distribution.batch_tags.append(response.batch_tag)
        if response.batch is None:
            distribution.empty_batch_tags.append(response.batch_tag)
            continue
        batches.add_writable(
            File(batch_file_name(sequence, response.batch_tag), response.batch.payload)
        )

    archive.add_writable(
        File(
            INDEX_FILE_NAME,
            _render_index(distribution.batch_tags, distribution.empty_batch_tags),
        )
    )

    date_directory = Directory("date")
    day_directory = Directory(date.isoformat(), index=date)
    day_directory.add_writable(archive)
    date_directory.add_writable(day_directory)
    distribution.root.add_writable(date_directory)

    if prefix:
        outer = None
        for segment in reversed(prefix.strip("/").split("/")):
            wrapper = Directory(segment)
            wrapper.add_writable(outer or distribution.root)
            outer = wrapper
        distribution.root = outer
    return distribution
