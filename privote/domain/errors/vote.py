"""Vote submission errors surfaced synchronously to callers.

These errors are raised before anything enters the async pipeline:
no job is created when one of them is raised.
"""

from __future__ import annotations

from uuid import UUID

from privote.domain.exceptions import PrivoteError


class ValidationRejectionError(PrivoteError):
    """Raised when a submission fails eligibility checks.

    Attributes:
        proposal_id: Proposal the submission targeted.
        reason: Machine-readable rejection reason.
    """

    def __init__(self, proposal_id: UUID, reason: str, message: str = "") -> None:
        self.proposal_id = proposal_id
        self.reason = reason
        super().__init__(message or f"Vote rejected for proposal {proposal_id}: {reason}")


class ProposalNotFoundError(ValidationRejectionError):
    """Raised when the targeted proposal does not exist."""

    def __init__(self, proposal_id: UUID) -> None:
        super().__init__(
            proposal_id,
            reason="proposal_not_found",
            message=f"Proposal {proposal_id} not found",
        )


class ProposalNotOpenError(ValidationRejectionError):
    """Raised when the proposal is closed or outside its voting window."""

    def __init__(self, proposal_id: UUID) -> None:
        super().__init__(
            proposal_id,
            reason="proposal_not_open",
            message=f"Proposal {proposal_id} is not accepting votes",
        )


class MalformedCiphertextError(ValidationRejectionError):
    """Raised when the ciphertext reference cannot be parsed."""

    def __init__(self, proposal_id: UUID, detail: str) -> None:
        self.detail = detail
        super().__init__(
            proposal_id,
            reason="malformed_ciphertext",
            message=f"Malformed ciphertext reference: {detail}",
        )


class DuplicateVoteError(PrivoteError):
    """Raised when a subject already has a vote record for a proposal.

    Backed by the unique constraint on (proposal_id, subject_id).

    Attributes:
        proposal_id: Proposal voted on.
        subject_id: Subject that already voted.
        existing_vote_id: Id of the existing record, when known.
    """

    def __init__(
        self,
        proposal_id: UUID,
        subject_id: UUID,
        existing_vote_id: UUID | None = None,
    ) -> None:
        self.proposal_id = proposal_id
        self.subject_id = subject_id
        self.existing_vote_id = existing_vote_id
        super().__init__(
            f"Subject {subject_id} has already voted on proposal {proposal_id}"
        )


class VoteRecordNotFoundError(PrivoteError):
    """Raised when a vote record id does not resolve."""

    def __init__(self, vote_id: UUID) -> None:
        self.vote_id = vote_id
        super().__init__(f"Vote record {vote_id} not found")
