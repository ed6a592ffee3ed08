"""Tally errors."""

from __future__ import annotations

from uuid import UUID

from privote.domain.exceptions import PrivoteError


class TallyPreconditionUnmetError(PrivoteError):
    """Raised when a tally job runs before its proposal is closed.

    Terminal for that job instance; an operator must re-trigger the tally.

    Attributes:
        proposal_id: Proposal the tally was requested for.
        reason: Which precondition failed.
    """

    def __init__(self, proposal_id: UUID, reason: str = "proposal_not_closed") -> None:
        self.proposal_id = proposal_id
        self.reason = reason
        super().__init__(f"Tally precondition unmet for proposal {proposal_id}: {reason}")


class TallyNotReadyError(PrivoteError):
    """Raised when a tally is read before it has been computed.

    Attributes:
        proposal_id: The proposal.
        awaiting_close: True when voting has ended but the proposal has
            not been closed and tallied yet.
    """

    def __init__(self, proposal_id: UUID, awaiting_close: bool = False) -> None:
        self.proposal_id = proposal_id
        self.awaiting_close = awaiting_close
        if awaiting_close:
            message = f"Proposal {proposal_id} ended but not yet tallied"
        else:
            message = f"Tally not yet computed for proposal {proposal_id}"
        super().__init__(message)
