"""
Typed Job Requests.

Strongly typed values handed to the job scheduler. They are converted to
JSON-safe payloads only at the scheduler boundary.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from claimflow.core.enums import JobType, SubmissionMethod


class StatusRefreshJobRequest(BaseModel):
    """Refresh the external status of a set of claims after a delay."""

    job_type: JobType = Field(default=JobType.CLAIM_STATUS_REFRESH, frozen=True)
    claim_ids: list[UUID] = Field(..., min_length=1)
    delay_minutes: int = Field(default=0, ge=0)

    def to_payload(self) -> dict[str, Any]:
        return {"claim_ids": [str(cid) for cid in self.claim_ids]}


class ClaimSubmissionJobRequest(BaseModel):
    """Submit claims in the background.

    With no claim_ids the handler submits every claim ready for submission.
    """

    job_type: JobType = Field(default=JobType.CLAIM_SUBMISSION, frozen=True)
    claim_ids: Optional[list[UUID]] = None
    submission_method: SubmissionMethod = SubmissionMethod.ELECTRONIC
    notes: Optional[str] = None
    user_id: Optional[UUID] = None
    delay_minutes: int = Field(default=0, ge=0)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"job_type", "delay_minutes"})
