"""
The Lambda Adapter & Orchestrator for the Federation Distribution service.

This module is the main entry point for the AWS Lambda function. It is
responsible for:
1.  Initializing and configuring AWS Lambda Powertools (Logger, Tracer and
    Metrics).
2.  Parsing the scheduled or manual invocation event into a `DownloadRequest`.
3.  Downloading every batch the federation gateway offers for the date,
    retrying transport failures with backoff and resuming at the failed page.
4.  Assembling the day's distribution tree (ZIP archive plus checksum) under
    a per-invocation output folder.
5.  Publishing the finished files to the distribution bucket.
"""

import random
import shutil
import time
from datetime import date
from pathlib import Path
from typing import Any

import boto3
import pydantic
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from .clients import FederationGatewayClient, S3Client
from .config import get_config
from .core import Assembler, publish_output
from .distribution import build_day_distribution
from .download import FederationGatewayDownloadService
from .exceptions import (
    FederationDistributionError,
    FederationGatewayError,
    GatewayTransportError,
    get_error_context,
    is_retryable_error,
)
from .schemas import BatchDownloadResponse, DownloadRequest

# --- Global & Reusable Components ---
CONFIG = get_config()

logger = Logger(service=CONFIG.service_name, level=CONFIG.log_level)
tracer = Tracer(service=CONFIG.service_name)
metrics = Metrics(
    namespace="FederationDistribution",
    service=CONFIG.service_name,
)

s3_boto_client = boto3.client("s3")
s3_client = S3Client(s3_client=s3_boto_client, kms_key_id=CONFIG.kms_key_id)

gateway_client = FederationGatewayClient(
    base_url=CONFIG.efgs_base_url,
    timeout_seconds=CONFIG.efgs_timeout_seconds,
    cert=CONFIG.client_cert,
)
download_service = FederationGatewayDownloadService(gateway_client)


def _retry_delay_seconds(attempt: int) -> float:
    """Exponential backoff with full jitter, capped at the configured maximum."""
    base_delay = CONFIG.efgs_retry_base_delay_ms / 1000.0
    max_delay = CONFIG.efgs_retry_max_delay_ms / 1000.0
    delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
    return random.uniform(0.0, delay) if delay > 0 else 0.0


@tracer.capture_method
def download_day(
    day: date, start_batch_tag: str | None = None
) -> list[BatchDownloadResponse]:
    """
    Collect all batches of *day* in gateway order.

    Transport failures are retried up to `efgs_max_retries` times per page;
    each retry resumes at the page that failed instead of starting over.
    """
    responses: list[BatchDownloadResponse] = []
    cursor = start_batch_tag
    attempt = 0

    while True:
        stream = download_service.stream(day, cursor)
        try:
            for response in stream:
                responses.append(response)
                attempt = 0
            return responses
        except GatewayTransportError as e:
            attempt += 1
            if attempt > CONFIG.efgs_max_retries:
                metrics.add_metric(
                    name="GatewayRetriesExhausted", unit=MetricUnit.Count, value=1
                )
                raise
            delay = _retry_delay_seconds(attempt)
            cursor = stream.cursor
            metrics.add_metric(name="GatewayRetries", unit=MetricUnit.Count, value=1)
            logger.warning(
                "Retrying batch download after transport error",
                extra={
                    "attempt": attempt,
                    "max_retries": CONFIG.efgs_max_retries,
                    "delay_seconds": round(delay, 3),
                    "date": day.isoformat(),
                    "batch_tag": cursor,
                    "error": e.message,
                },
            )
            time.sleep(delay)


def _assemble_and_publish(
    request: DownloadRequest,
    responses: list[BatchDownloadResponse],
    context: LambdaContext,
) -> dict[str, Any]:
    run_root = Path(CONFIG.output_root) / context.aws_request_id
    distribution = build_day_distribution(
        request.date,
        responses,
        prefix=CONFIG.distribution_prefix,
        date_time=CONFIG.zip_date_time,
    )
    assembler = Assembler(
        run_root,
        should_stop=lambda: context.get_remaining_time_in_millis()
        < CONFIG.timeout_guard_threshold_ms,
    )

    try:
        root_dir = assembler.assemble(distribution.root)
        uploaded_keys = publish_output(
            s3_client,
            output_root=run_root,
            root_dir=root_dir,
            bucket=CONFIG.distribution_bucket,
        )
    finally:
        shutil.rmtree(run_root, ignore_errors=True)

    metrics.add_metric(
        name="PublishedFiles", unit=MetricUnit.Count, value=len(uploaded_keys)
    )
    logger.info(
        "Distribution published",
        extra={
            "date": request.date.isoformat(),
            "batch_count": distribution.batch_count,
            "empty_batch_count": len(distribution.empty_batch_tags),
            "archive_checksum": distribution.archive.checksum,
            "uploaded_keys": uploaded_keys,
        },
    )
    return {
        "status": "published",
        "date": request.date.isoformat(),
        "batchCount": distribution.batch_count,
        "emptyBatchCount": len(distribution.empty_batch_tags),
        "archiveChecksum": distribution.archive.checksum,
        "uploadedKeys": uploaded_keys,
    }


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Main Lambda handler for scheduled and manual download runs."""
    metrics.add_dimension("environment", CONFIG.environment)

    try:
        request = DownloadRequest.model_validate(event or {})
    except pydantic.ValidationError as e:
        logger.error(
            "Invalid download request.",
            extra={"validation_errors": e.errors(include_url=False)},
        )
        raise ValueError("Invalid download request") from e

    logger.info(
        "Starting federation batch download",
        extra={
            "date": request.date.isoformat(),
            "start_batch_tag": request.start_batch_tag,
            "request_id": context.aws_request_id,
        },
    )

    try:
        responses = download_day(request.date, request.start_batch_tag)
    except FederationGatewayError as e:
        metrics.add_metric(name="GatewayErrors", unit=MetricUnit.Count, value=1)
        logger.error(
            f"Batch download failed: {e}", extra={"error": get_error_context(e)}
        )
        raise

    metrics.add_metric(
        name="BatchesDownloaded", unit=MetricUnit.Count, value=len(responses)
    )
    if not responses:
        logger.info(
            "Gateway offered no batches for date.",
            extra={"date": request.date.isoformat()},
        )
        return {
            "status": "empty",
            "date": request.date.isoformat(),
            "batchCount": 0,
            "emptyBatchCount": 0,
            "archiveChecksum": None,
            "uploadedKeys": [],
        }

    try:
        return _assemble_and_publish(request, responses, context)
    except FederationDistributionError as e:
        metrics.add_metric(
            name="RetryableAppErrors" if is_retryable_error(e) else "NonRetryableAppErrors",
            unit=MetricUnit.Count,
            value=1,
        )
        logger.error(
            f"Assembly or publishing failed: {e}", extra={"error": get_error_context(e)}
        )
        raise
