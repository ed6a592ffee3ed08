"""Domain models for votes, jobs, proposals and handler outcomes."""

from privote.domain.models.job import (
    BackoffPolicy,
    Job,
    JobKind,
    JobOptions,
    JobState,
    JobStatusSnapshot,
)
from privote.domain.models.outcome import HandlerOutcome, OutcomeKind, SubmissionStage
from privote.domain.models.proposal import Proposal
from privote.domain.models.vote_record import VoteRecord, VoteStatus

__all__: list[str] = [
    "BackoffPolicy",
    "HandlerOutcome",
    "Job",
    "JobKind",
    "JobOptions",
    "JobState",
    "JobStatusSnapshot",
    "OutcomeKind",
    "Proposal",
    "SubmissionStage",
    "VoteRecord",
    "VoteStatus",
]
