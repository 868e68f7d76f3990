from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VoteEntry(BaseModel):
    id: str
    count: int


class TargetUpdate(BaseModel):
    id: str
    previous: int | float
    next: int | float


class UpdateOutcome(BaseModel):
    updated: int = 0
    vote_property: str | None = None
    results: list[TargetUpdate] = Field(default_factory=list)
    results_saved: bool = False
    results_error: str | None = None


class SubmissionJob(BaseModel):
    job_id: str
    received_at: datetime
    status: JobStatus = JobStatus.QUEUED
    key_id: str | None = None
    votes: list[VoteEntry] = Field(default_factory=list)
    results: Any = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    update_result: UpdateOutcome | None = None
    error: str | None = None


class VoteSubmissionIn(BaseModel):
    key_id: Any = Field(default=None, alias="keyId")
    votes: Any = None
    results: Any = None

    model_config = ConfigDict(populate_by_name=True)


class VoteSubmissionAccepted(BaseModel):
    ok: bool = True
    queued: bool = True
    job_id: str = Field(alias="jobId")

    model_config = ConfigDict(populate_by_name=True)


class VoteKeyIn(BaseModel):
    key: Any = None


class VoteKeyOut(BaseModel):
    ok: bool = True
    key_id: str = Field(alias="keyId")

    model_config = ConfigDict(populate_by_name=True)
