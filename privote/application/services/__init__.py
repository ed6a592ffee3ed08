"""Application services."""

from privote.application.services.tally_service import (
    EncryptedTally,
    PublicTally,
    TallyService,
)
from privote.application.services.vote_submission_service import (
    SubmissionTicket,
    VoteSubmissionService,
    submission_job_id,
)

__all__: list[str] = [
    "EncryptedTally",
    "PublicTally",
    "SubmissionTicket",
    "TallyService",
    "VoteSubmissionService",
    "submission_job_id",
]
