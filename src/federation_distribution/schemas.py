# In src/federation_distribution/schemas.py

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DiagnosisKeyBatch(BaseModel):
    """
    A protobuf-encoded batch of diagnosis keys as served by the gateway.

    The service never looks inside the message; it only carries the encoded
    bytes from the gateway response into the distribution archive.
    """

    model_config = ConfigDict(frozen=True)

    payload: bytes = Field(..., min_length=1)

    @classmethod
    def from_body(cls, body: bytes | None) -> "DiagnosisKeyBatch | None":
        """An empty body is a valid response that simply carries no batch."""
        if not body:
            return None
        return cls(payload=body)


class BatchDownloadResponse(BaseModel):
    """One successful fetch from the gateway."""

    model_config = ConfigDict(frozen=True)

    batch_tag: str = Field(..., min_length=1)
    batch: DiagnosisKeyBatch | None = None
    next_batch_tag: str | None = None

    @property
    def has_next(self) -> bool:
        return self.next_batch_tag is not None


def _yesterday_utc() -> dt.date:
    return (dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1)).date()


class DownloadRequest(BaseModel):
    """
    Pydantic model for the event that triggers a download run.

    A scheduled invocation carries no fields and processes yesterday (UTC).
    A manual invocation may pin the date and resume from a batch tag.
    """

    date: dt.date = Field(default_factory=_yesterday_utc)
    start_batch_tag: str | None = Field(None, alias="startBatchTag")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("start_batch_tag")
    @classmethod
    def reject_blank_tag(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("startBatchTag must not be blank")
        return value
