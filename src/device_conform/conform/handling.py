"""Classify-and-record helpers used at every device call site."""

from __future__ import annotations

from device_conform.conform.classifier import (
    ExceptionClassifier,
    MemberKind,
    Requiredness,
)
from device_conform.conform.results import VerdictRecorder

__all__ = ["ExceptionReporter"]


class ExceptionReporter:
    """Routes caught device exceptions to verdicts.

    The ``*_as_ok`` / ``*_as_info`` helpers are for calls where an invalid
    input was sent on purpose as a boundary test: the expected error
    family is a pass, anything else falls through to ``classify``.
    """

    def __init__(self, classifier: ExceptionClassifier, recorder: VerdictRecorder) -> None:
        self.classifier = classifier
        self.recorder = recorder

    def handle_exception(
        self,
        member: str,
        kind: MemberKind,
        requiredness: Requiredness,
        exc: BaseException,
        user_message: str = "",
    ) -> None:
        """Classify ``exc`` and record the outcome."""
        self.recorder.record(
            self.classifier.classify(member, exc, kind, requiredness, user_message)
        )
        self.recorder.debug(member, f"Exception detail: {exc!r}")

    def handle_invalid_value_as_ok(
        self,
        member: str,
        kind: MemberKind,
        requiredness: Requiredness,
        exc: BaseException,
        user_action: str,
        message: str,
    ) -> None:
        """OK with ``message`` for an invalid-value signal, else classify."""
        for outcome in self.classifier.invalid_value_shape_issues(member, exc):
            self.recorder.record(outcome)
        if self.classifier.is_invalid_value(exc):
            self.recorder.ok(member, message)
        else:
            self.handle_exception(member, kind, requiredness, exc, user_action)

    def handle_invalid_value_as_info(
        self,
        member: str,
        kind: MemberKind,
        requiredness: Requiredness,
        exc: BaseException,
        user_action: str,
        message: str,
    ) -> None:
        """INFO with ``message`` for an invalid-value signal, else classify."""
        for outcome in self.classifier.invalid_value_shape_issues(member, exc):
            self.recorder.record(outcome)
        if self.classifier.is_invalid_value(exc):
            self.recorder.info(member, message)
        else:
            self.handle_exception(member, kind, requiredness, exc, user_action)

    def handle_invalid_operation_as_ok(
        self,
        member: str,
        kind: MemberKind,
        requiredness: Requiredness,
        exc: BaseException,
        user_action: str,
        message: str,
    ) -> None:
        """OK with ``message`` for an invalid-operation signal, else classify."""
        for outcome in self.classifier.invalid_operation_shape_issues(member, exc):
            self.recorder.record(outcome)
        if self.classifier.is_invalid_operation(exc):
            self.recorder.ok(member, message)
        else:
            self.handle_exception(member, kind, requiredness, exc, user_action)
