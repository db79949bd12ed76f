"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import os
import types
import uuid
from typing import Callable

import pytest
from requests.structures import CaseInsensitiveDict

from federation_distribution.clients import PROTOBUF_MEDIA_TYPE, GatewayResponse


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    Overwrite *only* the variables needed by the handler.
    """
    original = os.environ.copy()
    os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "federation-distribution-test")
    os.environ.setdefault("POWERTOOLS_LOG_LEVEL", "INFO")
    os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
    os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "FederationDistributionTest")
    os.environ.setdefault("AWS_DEFAULT_REGION", "eu-central-1")
    yield
    os.environ.clear()
    os.environ.update(original)


@pytest.fixture
def create_diagnosis_key_batch() -> Callable[[str], bytes]:
    """
    Stand-in for a serialized DiagnosisKeyBatch: a protobuf length-delimited
    field 1 carrying the marker. The service treats it as opaque bytes.
    """

    def _create(marker: str) -> bytes:
        payload = marker.encode("utf-8")
        return b"\x0a" + bytes([len(payload)]) + payload

    return _create


@pytest.fixture
def make_gateway_response() -> Callable[..., GatewayResponse]:
    """Builds a GatewayResponse like the ones the HTTP client returns."""

    def _make(
        status_code: int = 200,
        batch_tag: str | None = "batch-tag",
        next_batch_tag: str | None = None,
        body: bytes = b"",
        content_type: str | None = PROTOBUF_MEDIA_TYPE,
    ) -> GatewayResponse:
        headers = CaseInsensitiveDict()
        if content_type is not None:
            headers["Content-Type"] = content_type
        if batch_tag is not None:
            headers["batchTag"] = batch_tag
        if next_batch_tag is not None:
            headers["nextBatchTag"] = next_batch_tag
        return GatewayResponse(status_code=status_code, headers=headers, body=body)

    return _make


@pytest.fixture
def lambda_context():
    """A *very* small stand-in for the LambdaContext object."""
    return types.SimpleNamespace(
        aws_request_id="req-" + uuid.uuid4().hex,
        function_name="federation-distribution",
        memory_limit_in_mb=512,
        invoked_function_arn="arn:aws:lambda:eu-central-1:000000000000:function:dummy",
        get_remaining_time_in_millis=lambda: 300_000,
    )
