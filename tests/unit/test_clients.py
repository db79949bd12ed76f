# tests/unit/test_clients.py

"""
Unit tests for the client wrappers in src/federation_distribution/clients.py.

The requests session and the boto3 S3 client are replaced by MagicMocks, so
these tests check the arguments we pass and the way library exceptions are
translated into the service's own error types.
"""

from unittest.mock import ANY, MagicMock

import pytest
import requests
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from federation_distribution.clients import (
    PROTOBUF_MEDIA_TYPE,
    FederationGatewayClient,
    S3Client,
)
from federation_distribution.exceptions import (
    GatewayTransportError,
    PublishError,
    S3AccessDeniedError,
    S3ThrottlingError,
    S3TimeoutError,
)


# -----------------------------------------------------------------------------
# Fixtures for setting up clients with mock dependencies
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_session() -> MagicMock:
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def gateway_client(mock_session: MagicMock) -> FederationGatewayClient:
    return FederationGatewayClient(
        "https://efgs.example.test/", timeout_seconds=3.0, session=mock_session
    )


@pytest.fixture
def mock_boto_s3_client() -> MagicMock:
    """Yields a MagicMock for the boto3 S3 client."""
    return MagicMock()


@pytest.fixture
def s3_client(mock_boto_s3_client: MagicMock) -> S3Client:
    """Yields an instance of our S3Client wrapper without KMS."""
    return S3Client(s3_client=mock_boto_s3_client)


@pytest.fixture
def s3_client_with_kms(mock_boto_s3_client: MagicMock) -> S3Client:
    """Yields an instance of our S3Client wrapper with KMS enabled."""
    return S3Client(s3_client=mock_boto_s3_client, kms_key_id="test-kms-key")


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "index.zip"
    path.write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    return path


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} message"}}, "PutObject")


def _http_response(status_code=200, headers=None, content=b"") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.content = content
    return response


# -----------------------------------------------------------------------------
# Tests for FederationGatewayClient
# -----------------------------------------------------------------------------


def test_gateway_client_sets_accept_header(gateway_client, mock_session):
    assert mock_session.headers["Accept"] == PROTOBUF_MEDIA_TYPE


def test_gateway_client_first_page_url(gateway_client, mock_session):
    mock_session.get.return_value = _http_response()

    gateway_client.get_diagnosis_keys("2020-09-01")

    mock_session.get.assert_called_once_with(
        "https://efgs.example.test/diagnosis-keys/download/2020-09-01", timeout=3.0
    )


def test_gateway_client_quotes_batch_tag(gateway_client, mock_session):
    mock_session.get.return_value = _http_response()

    gateway_client.get_diagnosis_keys("2020-09-01", "tag/with space")

    mock_session.get.assert_called_once_with(
        "https://efgs.example.test/diagnosis-keys/download/2020-09-01/tag%2Fwith%20space",
        timeout=3.0,
    )


def test_gateway_client_returns_raw_response(gateway_client, mock_session):
    mock_session.get.return_value = _http_response(
        status_code=404, headers={"batchTag": "b1"}, content=None
    )

    response = gateway_client.get_diagnosis_keys("2020-09-01")

    assert response.status_code == 404
    assert response.headers["BATCHTAG"] == "b1"
    assert response.body == b""


@pytest.mark.parametrize(
    "exception, message_fragment",
    [
        (requests.Timeout("read timed out"), "timed out after 3.0s"),
        (requests.ConnectionError("connection refused"), "connection refused"),
        (requests.exceptions.SSLError("bad certificate"), "bad certificate"),
    ],
)
def test_gateway_client_maps_transport_failures(
    gateway_client, mock_session, exception, message_fragment
):
    mock_session.get.side_effect = exception

    with pytest.raises(GatewayTransportError) as exc_info:
        gateway_client.get_diagnosis_keys("2020-09-01", "b2")

    error = exc_info.value
    assert message_fragment in error.message
    assert error.batch_tag == "b2"
    assert error.context["url"].endswith("/2020-09-01/b2")
    assert error.__cause__ is exception


def test_gateway_client_configures_client_certificate(mock_session):
    FederationGatewayClient(
        "https://efgs.example.test", session=mock_session, cert=("c.pem", "c.key")
    )

    assert mock_session.cert == ("c.pem", "c.key")


# -----------------------------------------------------------------------------
# Tests for S3Client
# -----------------------------------------------------------------------------


def test_s3_client_upload_file_without_kms(s3_client, mock_boto_s3_client, artifact):
    s3_client.upload_file(
        bucket="dist-bucket",
        key="version/v1/index.zip",
        file_path=artifact,
        content_hash="abc123",
        content_type="application/zip",
    )

    mock_boto_s3_client.put_object.assert_called_once_with(
        Bucket="dist-bucket",
        Key="version/v1/index.zip",
        Body=ANY,
        Metadata={"content-sha256": "abc123"},
        ContentType="application/zip",
    )


def test_s3_client_upload_file_with_kms(s3_client_with_kms, mock_boto_s3_client, artifact):
    s3_client_with_kms.upload_file(
        bucket="dist-bucket", key="k", file_path=artifact, content_hash="abc123"
    )

    kwargs = mock_boto_s3_client.put_object.call_args.kwargs
    assert kwargs["ServerSideEncryption"] == "aws:kms"
    assert kwargs["SSEKMSKeyId"] == "test-kms-key"
    assert kwargs["ContentType"] == "application/octet-stream"


@pytest.mark.parametrize(
    "error_code, expected_exception",
    [
        ("AccessDenied", S3AccessDeniedError),
        ("SlowDown", S3ThrottlingError),
        ("ThrottlingException", S3ThrottlingError),
        ("RequestTimeout", S3TimeoutError),
        ("InternalError", PublishError),
    ],
)
def test_s3_client_maps_client_errors(
    s3_client, mock_boto_s3_client, artifact, error_code, expected_exception
):
    mock_boto_s3_client.put_object.side_effect = _client_error(error_code)

    with pytest.raises(expected_exception) as exc_info:
        s3_client.upload_file(bucket="b", key="k", file_path=artifact, content_hash="h")

    assert exc_info.value.context["aws_error_code"] == error_code


@pytest.mark.parametrize(
    "exception",
    [
        ReadTimeoutError(endpoint_url="https://s3.example.test"),
        EndpointConnectionError(endpoint_url="https://s3.example.test"),
    ],
)
def test_s3_client_maps_connection_failures(s3_client, mock_boto_s3_client, artifact, exception):
    mock_boto_s3_client.put_object.side_effect = exception

    with pytest.raises(S3TimeoutError):
        s3_client.upload_file(bucket="b", key="k", file_path=artifact, content_hash="h")


def test_s3_client_missing_file_is_a_publish_error(s3_client, mock_boto_s3_client, tmp_path):
    with pytest.raises(PublishError):
        s3_client.upload_file(
            bucket="b", key="k", file_path=tmp_path / "missing.zip", content_hash="h"
        )

    mock_boto_s3_client.put_object.assert_not_called()
