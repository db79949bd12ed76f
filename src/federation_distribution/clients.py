# src/federation_distribution/clients.py

"""
Client wrappers for the two external systems the service talks to.

`FederationGatewayClient` is a thin HTTP client for the EFGS download API;
it knows URLs, headers, timeouts and client certificates, but nothing about
pagination. `S3Client` publishes assembled artifacts to the distribution
bucket. Both translate library exceptions into the service's own types so
that callers never depend on requests or botocore directly.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Mapping
from urllib.parse import quote

import requests
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError
from requests.structures import CaseInsensitiveDict

from .exceptions import (
    GatewayTransportError,
    PublishError,
    S3AccessDeniedError,
    S3ThrottlingError,
    S3TimeoutError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType

logger = logging.getLogger(__name__)

PROTOBUF_MEDIA_TYPE = "application/protobuf; version=1.0"
_DOWNLOAD_PATH = "/diagnosis-keys/download"


@dataclass(frozen=True)
class GatewayResponse:
    """Raw outcome of one gateway call; header lookup is case-insensitive."""

    status_code: int
    headers: Mapping[str, str]
    body: bytes


class FederationGatewayClient:
    """
    HTTP client for `GET /diagnosis-keys/download/{date}[/{batchTag}]`.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
        cert: tuple[str, str] | None = None,
    ):
        """
        Initializes the FederationGatewayClient.

        Args:
            base_url: Gateway root, e.g. ``https://efgs.example.eu``.
            timeout_seconds: Applied to both connect and read of every call.
            session: Optional pre-configured session (connection pooling, mTLS).
            cert: Optional (certificate, key) pair for mutual TLS.
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": PROTOBUF_MEDIA_TYPE})
        if cert:
            self._session.cert = cert
            logger.debug("Gateway client configured with a client certificate.")

    def _url(self, date: str, batch_tag: str | None) -> str:
        url = f"{self._base_url}{_DOWNLOAD_PATH}/{quote(date, safe='')}"
        if batch_tag is not None:
            url = f"{url}/{quote(batch_tag, safe='')}"
        return url

    def get_diagnosis_keys(self, date: str, batch_tag: str | None = None) -> GatewayResponse:
        """
        Fetch the first batch of *date*, or the batch *batch_tag* of *date*.

        Any HTTP status is returned as-is; only failures to obtain a response
        at all (timeouts, refused connections, TLS errors) raise.
        """
        url = self._url(date, batch_tag)
        logger.debug("Requesting diagnosis keys", extra={"date": date, "batch_tag": batch_tag})
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.Timeout as e:
            raise GatewayTransportError(
                f"request timed out after {self._timeout}s",
                date=date,
                batch_tag=batch_tag,
                context={"url": url},
            ) from e
        except requests.RequestException as e:
            raise GatewayTransportError(
                str(e)[:256],
                date=date,
                batch_tag=batch_tag,
                context={"url": url},
            ) from e

        return GatewayResponse(
            status_code=response.status_code,
            headers=CaseInsensitiveDict(response.headers),
            body=response.content or b"",
        )

    def close(self) -> None:
        self._session.close()


class S3Client:
    """
    A wrapper for S3 client operations, focused on publishing distribution files.
    """

    def __init__(self, s3_client: "S3ClientType", kms_key_id: str | None = None):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
            kms_key_id: Optional KMS key ID for server-side encryption.
        """
        self._client = s3_client
        self._kms_key_id = kms_key_id
        if self._kms_key_id:
            logger.debug(
                "S3Client initialized with SSE-KMS enabled.",
                extra={"kms_key_id": self._kms_key_id},
            )

    def upload_file(
        self,
        bucket: str,
        key: str,
        file_path: Path,
        content_hash: str,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Uploads one finished distribution file with its SHA-256 as metadata."""
        extra_args = {
            "Metadata": {"content-sha256": content_hash},
            "ContentType": content_type,
        }
        if self._kms_key_id:
            extra_args.update(
                {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": self._kms_key_id}
            )
        logger.info(
            "Uploading distribution file",
            extra={"bucket": bucket, "key": key, "kms_enabled": bool(self._kms_key_id)},
        )

        error_context = {"bucket": bucket, "key": key, "content_hash": content_hash}
        try:
            with open(file_path, "rb") as body:
                self._client.put_object(Bucket=bucket, Key=key, Body=body, **extra_args)
            logger.debug(
                "Upload (PUT) completed successfully",
                extra={"bucket": bucket, "key": key},
            )
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"]["Message"]
            error_context.update(
                {"aws_error_code": error_code, "aws_error_message": error_message}
            )

            # Map boto3 error codes to our specific exception types
            if error_code == "AccessDenied":
                raise S3AccessDeniedError(
                    bucket=bucket, key=key, context=error_context
                ) from e
            elif error_code in [
                "Throttling",
                "ThrottlingException",
                "RequestLimitExceeded",
                "SlowDown",
            ]:
                raise S3ThrottlingError("put_object", context=error_context) from e
            elif error_code in ["RequestTimeout", "RequestTimeoutException"]:
                raise S3TimeoutError("put_object", context=error_context) from e
            else:
                raise PublishError(
                    f"S3 client error: {error_message}", context=error_context
                ) from e
        except ReadTimeoutError as e:
            error_context["timeout_error"] = str(e)
            raise S3TimeoutError("put_object", context=error_context) from e
        except EndpointConnectionError as e:
            error_context["connection_error"] = str(e)
            raise S3TimeoutError("put_object", context=error_context) from e
        except OSError as e:
            error_context["strerror"] = e.strerror
            raise PublishError(
                f"Cannot read {file_path}", context=error_context
            ) from e
