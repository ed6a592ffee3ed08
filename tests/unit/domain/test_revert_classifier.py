"""Unit tests for ledger failure classification.

A permanent rejection misread as transient burns retries; a transient
failure misread as permanent loses the vote. These cases pin the rules.
"""

import pytest

from privote.domain.errors import (
    FailureClass,
    PermanentLedgerRejectionError,
    TransientSubmissionError,
)
from privote.domain.services.revert_classifier import RevertClassifier


@pytest.fixture
def classifier() -> RevertClassifier:
    return RevertClassifier()


class TestKnownReverts:
    @pytest.mark.parametrize(
        ("message", "reason"),
        [
            ("execution reverted: Already voted", "already_voted"),
            ("execution reverted: Voting closed", "voting_closed"),
            ("execution reverted: Voting ended", "voting_ended"),
            ("execution reverted: Invalid input proof", "invalid_proof"),
            ("execution reverted: Tally already computed", "tally_already_computed"),
            ("VM Exception while processing transaction: Proposal does not exist",
             "proposal_not_found"),
        ],
    )
    def test_known_reasons_are_permanent(
        self, classifier: RevertClassifier, message: str, reason: str
    ) -> None:
        failure = classifier.classify(message)

        assert failure.failure_class is FailureClass.PERMANENT
        assert failure.reason == reason
        assert failure.detail == message

    def test_matching_is_case_insensitive(self, classifier: RevertClassifier) -> None:
        assert classifier.classify("ALREADY VOTED").reason == "already_voted"


class TestTransientConditions:
    @pytest.mark.parametrize(
        ("message", "reason"),
        [
            ("timeout: ReadTimeout", "timeout"),
            ("HTTP 429: Too Many Requests", "rate_limited"),
            ("HTTP 503: upstream", "node_unavailable"),
            ("connection error: refused", "node_unavailable"),
            ("nonce too low", "nonce_conflict"),
            ("insufficient funds for gas * price + value", "submitter_underfunded"),
        ],
    )
    def test_node_conditions_are_transient(
        self, classifier: RevertClassifier, message: str, reason: str
    ) -> None:
        failure = classifier.classify(message)

        assert failure.is_transient
        assert failure.reason == reason

    @pytest.mark.parametrize(
        "message",
        [
            "execution reverted: gas used 503211",
            "invalid argument 0: hex string 0x4290",
            "block 502 not found",
        ],
    )
    def test_bare_status_digits_do_not_match(
        self, classifier: RevertClassifier, message: str
    ) -> None:
        failure = classifier.classify(message)

        assert failure.reason not in ("rate_limited", "node_unavailable")

    def test_http_502_is_node_unavailable(self, classifier: RevertClassifier) -> None:
        failure = classifier.classify("HTTP 502: Bad Gateway")

        assert failure.is_transient
        assert failure.reason == "node_unavailable"


class TestFallbacks:
    def test_unrecognized_revert_is_permanent(self, classifier: RevertClassifier) -> None:
        failure = classifier.classify("execution reverted: custom error 0x1234")

        assert failure.failure_class is FailureClass.PERMANENT
        assert failure.reason == "unrecognized_revert"

    def test_mined_revert_ignores_transient_words(
        self, classifier: RevertClassifier
    ) -> None:
        # A receipt with status 0 executed; a "timeout" string in its reason
        # must not make it retryable.
        failure = classifier.classify("Lock timeout", reverted=True)

        assert failure.failure_class is FailureClass.PERMANENT
        assert failure.reason == "unrecognized_revert"

    def test_unknown_message_is_transient(self, classifier: RevertClassifier) -> None:
        failure = classifier.classify("something odd happened")

        assert failure.failure_class is FailureClass.TRANSIENT
        assert failure.reason == "unknown_rpc_error"

    def test_empty_message(self, classifier: RevertClassifier) -> None:
        assert classifier.classify("").reason == "unknown_rpc_error"

    def test_extra_patterns_take_precedence(self) -> None:
        classifier = RevertClassifier(extra_permanent=(("timeout", "deadline_passed"),))

        failure = classifier.classify("execution reverted: timeout")

        assert failure.failure_class is FailureClass.PERMANENT
        assert failure.reason == "deadline_passed"


class TestToError:
    def test_builds_typed_errors(self, classifier: RevertClassifier) -> None:
        permanent = classifier.classify("Already voted").to_error(tx_ref="0xtx")
        transient = classifier.classify("timeout").to_error()

        assert isinstance(permanent, PermanentLedgerRejectionError)
        assert permanent.tx_ref == "0xtx"
        assert not permanent.is_transient
        assert isinstance(transient, TransientSubmissionError)
        assert transient.is_transient
