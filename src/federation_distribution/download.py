# src/federation_distribution/download.py

"""
Date-scoped batch download from the federation gateway.

The gateway paginates the batches of a day: the first request names only
the date, and every response names the next page in its ``nextBatchTag``
header. `FederationGatewayDownloadService` turns single responses into
`BatchDownloadResponse` values and `BatchDownloadStream` drives the
pagination until the gateway stops advertising a next page.
"""

import datetime as dt
import logging
from enum import Enum
from typing import Iterator, Mapping

from .clients import FederationGatewayClient, GatewayResponse
from .exceptions import (
    FederationGatewayError,
    GatewayNotFoundError,
    GatewayRequestRejectedError,
    GatewayTransportError,
    MalformedResponseError,
    MissingBatchTagError,
)
from .schemas import BatchDownloadResponse, DiagnosisKeyBatch

logger = logging.getLogger(__name__)

HEADER_BATCH_TAG = "batchTag"
HEADER_NEXT_BATCH_TAG = "nextBatchTag"
# The gateway sends the literal string "null" instead of omitting a header.
EMPTY_HEADER = "null"
_PROTOBUF_CONTENT_TYPE = "application/protobuf"


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Header value, or None when it is missing, empty or equal to ``"null"``."""
    value = headers.get(name)
    if not value or value == EMPTY_HEADER:
        return None
    return value


class FederationGatewayDownloadService:
    """
    Downloads diagnosis key batches from the federation gateway.
    """

    def __init__(self, client: FederationGatewayClient):
        self._client = client

    def download_first(self, date: dt.date) -> BatchDownloadResponse:
        """Download the first batch of *date*."""
        iso_date = date.isoformat()
        response = self._client.get_diagnosis_keys(iso_date)
        return self._parse_response(response, iso_date, None)

    def download_next(self, batch_tag: str, date: dt.date) -> BatchDownloadResponse:
        """Download the batch *batch_tag* of *date*."""
        iso_date = date.isoformat()
        response = self._client.get_diagnosis_keys(iso_date, batch_tag)
        return self._parse_response(response, iso_date, batch_tag)

    def stream(
        self, date: dt.date, start_batch_tag: str | None = None
    ) -> "BatchDownloadStream":
        """
        Lazily iterate over every batch of *date* in gateway order.

        Every call returns a fresh stream. Passing *start_batch_tag* resumes
        pagination at that batch, e.g. with the `cursor` of a stream that
        failed on a transport error.
        """
        return BatchDownloadStream(self, date, start_batch_tag)

    def _parse_response(
        self, response: GatewayResponse, date: str, requested_tag: str | None
    ) -> BatchDownloadResponse:
        status = response.status_code

        if status == 404:
            raise GatewayNotFoundError(date, requested_tag)
        if status >= 500:
            raise GatewayTransportError(
                f"HTTP {status}", date=date, batch_tag=requested_tag, status_code=status
            )
        if not 200 <= status < 300:
            raise GatewayRequestRejectedError(status, date=date, batch_tag=requested_tag)

        batch_tag = get_header(response.headers, HEADER_BATCH_TAG)
        if not batch_tag:
            raise MissingBatchTagError(
                HEADER_BATCH_TAG, date=date, batch_tag=requested_tag, status_code=status
            )

        if response.body:
            content_type = response.headers.get("Content-Type")
            if content_type and not content_type.lower().startswith(_PROTOBUF_CONTENT_TYPE):
                raise MalformedResponseError(
                    f"unexpected Content-Type '{content_type}'",
                    date=date,
                    batch_tag=batch_tag,
                    status_code=status,
                )

        return BatchDownloadResponse(
            batch_tag=batch_tag,
            batch=DiagnosisKeyBatch.from_body(response.body),
            next_batch_tag=get_header(response.headers, HEADER_NEXT_BATCH_TAG),
        )


class StreamState(str, Enum):
    INITIAL = "Initial"
    FETCHING = "Fetching"
    HAS_NEXT = "HasNext"
    DONE = "Done"
    FAILED = "Failed"


class BatchDownloadStream:
    """
    Iterator over the pages of one date.

    Initial -> Fetching -> HasNext -> Fetching -> ... -> Done | Failed.
    A 404 ends the stream cleanly; every other gateway error moves it to
    Failed and propagates. `cursor` is the tag being (or last) fetched, None
    for the date-only first request.
    """

    def __init__(
        self,
        service: FederationGatewayDownloadService,
        date: dt.date,
        start_batch_tag: str | None = None,
    ):
        self._service = service
        self.date = date
        self.cursor = start_batch_tag
        self.state = StreamState.INITIAL
        self.pages = 0
        self.error: FederationGatewayError | None = None

    def __iter__(self) -> Iterator[BatchDownloadResponse]:
        return self

    def __next__(self) -> BatchDownloadResponse:
        if self.state in (StreamState.DONE, StreamState.FAILED):
            raise StopIteration

        self.state = StreamState.FETCHING
        try:
            if self.cursor is None:
                response = self._service.download_first(self.date)
            else:
                response = self._service.download_next(self.cursor, self.date)
        except GatewayNotFoundError:
            logger.info(
                "Gateway has no further batches for date.",
                extra={"date": self.date.isoformat(), "batch_tag": self.cursor},
            )
            self.state = StreamState.DONE
            raise StopIteration
        except FederationGatewayError as e:
            self.state = StreamState.FAILED
            self.error = e
            logger.warning(
                "Batch download failed.",
                extra={
                    "date": self.date.isoformat(),
                    "batch_tag": self.cursor,
                    "error_code": e.error_code,
                },
            )
            raise

        self.pages += 1
        if response.next_batch_tag is None:
            self.state = StreamState.DONE
        else:
            self.state = StreamState.HAS_NEXT
            self.cursor = response.next_batch_tag
        logger.debug(
            "Batch downloaded.",
            extra={
                "date": self.date.isoformat(),
                "batch_tag": response.batch_tag,
                "next_batch_tag": response.next_batch_tag,
                "empty": response.batch is None,
            },
        )
        return response
