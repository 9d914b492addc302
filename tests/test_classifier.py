"""Tests for exception classification."""

from __future__ import annotations

import pytest

from device_conform.conform.classifier import (
    ClassifiedOutcome,
    ErrorCodes,
    ExceptionClassifier,
    MemberKind,
    OutcomeCategory,
    Requiredness,
    Verdict,
)
from device_conform.drivers.exceptions import (
    INVALID_OPERATION,
    INVALID_VALUE,
    NOT_IMPLEMENTED,
    DriverError,
    InvalidOperationError,
    InvalidValueError,
    MethodNotImplementedError,
    NativeError,
    NotImplementedMemberError,
    OperationTimeoutError,
    PostconditionError,
    PropertyNotImplementedError,
    ValueNotSetError,
)
from device_conform.drivers.types import Technology

PROPERTY = MemberKind.PROPERTY
METHOD = MemberKind.METHOD


@pytest.fixture
def native() -> ExceptionClassifier:
    """Classifier for in-process handles."""
    return ExceptionClassifier(technology=Technology.NATIVE)


# =============================================================================
# Verdict
# =============================================================================


class TestVerdict:
    """Tests for Verdict ordering."""

    def test_severity_order(self):
        """OK < INFO < ISSUE < ERROR."""
        assert Verdict.OK < Verdict.INFO < Verdict.ISSUE < Verdict.ERROR
        assert Verdict.ISSUE <= Verdict.ISSUE
        assert max([Verdict.INFO, Verdict.ERROR, Verdict.OK]) is Verdict.ERROR

    def test_comparison_with_other_types(self):
        """Comparing with a non-verdict is unsupported."""
        with pytest.raises(TypeError):
            _ = Verdict.OK < 1


# =============================================================================
# Not implemented
# =============================================================================


class TestNotImplemented:
    """Not-implemented errors of the right kind, per requiredness."""

    def test_optional_property_passes(self, native):
        """Verifies an optional member may be absent.

        Arrangement:
        1. PropertyNotImplementedError from a property read.
        2. Member declared OPTIONAL.

        Action:
        Classifies the exception.

        Assertion Strategy:
        - Verdict OK, category NOT_IMPLEMENTED.
        - Message names the exception.

        Testing Principle:
        A device that correctly reports a missing optional feature
        must not be penalised.
        """
        outcome = native.classify(
            "StepSize", PropertyNotImplementedError("no"), PROPERTY, Requiredness.OPTIONAL
        )

        assert outcome == ClassifiedOutcome(
            "StepSize",
            OutcomeCategory.NOT_IMPLEMENTED,
            Verdict.OK,
            "Optional member returned a PropertyNotImplementedError error.",
        )

    def test_mandatory_property_is_issue(self, native):
        """A mandatory member must not report not-implemented."""
        outcome = native.classify(
            "MaxStep", PropertyNotImplementedError(), PROPERTY, Requiredness.MANDATORY
        )

        assert outcome.verdict is Verdict.ISSUE
        assert outcome.message == (
            "This member is mandatory but returned a PropertyNotImplementedError error, "
            "it must function per the ASCOM specification."
        )

    def test_must_not_be_implemented_passes(self, native):
        """The expected absence is reported with the caller's context."""
        outcome = native.classify(
            "Position",
            PropertyNotImplementedError(),
            PROPERTY,
            Requiredness.MUST_NOT_BE_IMPLEMENTED,
            "Position must not be implemented for a relative focuser",
        )

        assert outcome.verdict is Verdict.OK
        assert outcome.message == (
            "Position must not be implemented for a relative focuser and a "
            "PropertyNotImplementedError error was generated as expected"
        )

    def test_must_be_implemented_is_issue(self, native):
        """A conditionally required member that is absent is an issue."""
        outcome = native.classify(
            "Move",
            MethodNotImplementedError(),
            METHOD,
            Requiredness.MUST_BE_IMPLEMENTED,
            "CanMove is True",
        )

        assert outcome.verdict is Verdict.ISSUE
        assert outcome.message.startswith(
            "CanMove is True and a MethodNotImplementedError error was returned"
        )

    def test_native_code_is_equivalent_to_typed(self, native):
        """Verifies a bare native code counts as the typed error.

        Arrangement:
        1. NativeError carrying the not-implemented code.

        Action:
        Classifies it as an optional property.

        Assertion Strategy:
        - Verdict OK.
        - Message shows the kind-qualified name and the native code.
        """
        outcome = native.classify(
            "StepSize", NativeError(NOT_IMPLEMENTED), PROPERTY, Requiredness.OPTIONAL
        )

        assert outcome.verdict is Verdict.OK
        assert "PropertyNotImplementedError (native error: 0x80040400)" in outcome.message

    @pytest.mark.parametrize(
        ("exc", "kind", "expected"),
        [
            (
                MethodNotImplementedError(),
                PROPERTY,
                "Received a MethodNotImplementedError instead of a "
                "PropertyNotImplementedError",
            ),
            (
                PropertyNotImplementedError(),
                METHOD,
                "Received a PropertyNotImplementedError instead of a "
                "MethodNotImplementedError",
            ),
            (
                NotImplementedMemberError(),
                PROPERTY,
                "Received a NotImplementedMemberError instead of a "
                "PropertyNotImplementedError",
            ),
            (
                NotImplementedError(),
                METHOD,
                "Received a builtin NotImplementedError instead of a "
                "MethodNotImplementedError",
            ),
        ],
    )
    def test_wrong_shape_is_issue(self, native, exc, kind, expected):
        """Not-implemented signals of the wrong family are shape mismatches."""
        outcome = native.classify("Member", exc, kind, Requiredness.OPTIONAL)

        assert outcome.category is OutcomeCategory.WRONG_NOT_IMPLEMENTED_SHAPE
        assert outcome.verdict is Verdict.ISSUE
        assert outcome.message == expected

    def test_generic_form_acceptable_over_alpaca(self):
        """Alpaca clients only have the generic not-implemented error."""
        classifier = ExceptionClassifier(technology=Technology.ALPACA)

        outcome = classifier.classify(
            "StepSize", NotImplementedMemberError(), PROPERTY, Requiredness.OPTIONAL
        )

        assert outcome.verdict is Verdict.OK

    def test_generic_form_acceptable_from_driver_access(self):
        """DriverAccess wrappers may use the generic form for optional members."""
        classifier = ExceptionClassifier(technology=Technology.DRIVER_ACCESS)

        outcome = classifier.classify(
            "StepSize", NotImplementedMemberError(), PROPERTY, Requiredness.OPTIONAL
        )

        assert outcome.verdict is Verdict.OK
        assert outcome.category is OutcomeCategory.NOT_IMPLEMENTED
        assert outcome.message == (
            "Optional member returned a NotImplementedMemberError error."
        )

    @pytest.mark.parametrize(
        ("requiredness", "expected"),
        [
            (Requiredness.MANDATORY, Verdict.ISSUE),
            (Requiredness.MUST_BE_IMPLEMENTED, Verdict.ISSUE),
            (Requiredness.MUST_NOT_BE_IMPLEMENTED, Verdict.OK),
        ],
    )
    def test_driver_access_still_applies_requiredness(self, requiredness, expected):
        """Verifies the generic form never excuses a required member.

        Arrangement:
        1. DriverAccess classifier.

        Action:
        Classifies a generic not-implemented error per obligation level.

        Assertion Strategy:
        - Mandatory and must-be-implemented members are issues.
        - Must-not-be-implemented members pass.
        """
        classifier = ExceptionClassifier(technology=Technology.DRIVER_ACCESS)

        outcome = classifier.classify(
            "Name", NotImplementedMemberError(), PROPERTY, requiredness, "Name read"
        )

        assert outcome.verdict is expected
        if requiredness is Requiredness.MANDATORY:
            assert outcome.message == (
                "This member is mandatory but returned a NotImplementedMemberError "
                "error, it must function per the ASCOM specification."
            )


# =============================================================================
# Other failures
# =============================================================================


class TestOtherFailures:
    """Timeouts, postconditions and unexpected errors."""

    def test_timeout_is_error(self, native):
        """Timeouts block the path under test."""
        exc = OperationTimeoutError("Moving focuser", 60.0)

        outcome = native.classify("Move", exc, METHOD, Requiredness.MANDATORY)

        assert outcome.verdict is Verdict.ERROR
        assert outcome.category is OutcomeCategory.TIMEOUT
        assert outcome.message == str(exc)

    def test_postcondition_is_error(self, native):
        """A readback that disagrees with a successful call is an error."""
        outcome = native.classify(
            "Connect", PostconditionError("Connected is False"), METHOD, Requiredness.MANDATORY
        )

        assert outcome.verdict is Verdict.ERROR
        assert outcome.category is OutcomeCategory.POSTCONDITION_MISMATCH

    def test_unexpected_error_message(self, native):
        """Unexpected errors carry the caller context and the exception name."""
        outcome = native.classify(
            "Move - To 0",
            InvalidValueError("out of range"),
            METHOD,
            Requiredness.MANDATORY,
            "Move should fail gracefully",
        )

        assert outcome.verdict is Verdict.ISSUE
        assert outcome.category is OutcomeCategory.INVALID_VALUE
        assert outcome.message == (
            "Unexpected error - Move should fail gracefully: InvalidValueError: out of range"
        )

    def test_builtin_error_is_unclassified(self, native):
        """A platform error without a device meaning keeps its qualified name."""
        outcome = native.classify(
            "Position", KeyError("boom"), PROPERTY, Requiredness.MANDATORY
        )

        assert outcome.category is OutcomeCategory.UNCLASSIFIED
        assert outcome.message.startswith("Unexpected error: builtins.KeyError exception:")

    @pytest.mark.parametrize(
        ("exc", "category"),
        [
            (InvalidValueError(), OutcomeCategory.INVALID_VALUE),
            (InvalidOperationError(), OutcomeCategory.INVALID_OPERATION),
            (ValueNotSetError(), OutcomeCategory.NOT_SET),
            (NativeError(INVALID_VALUE), OutcomeCategory.INVALID_VALUE),
            (NativeError(INVALID_OPERATION), OutcomeCategory.INVALID_OPERATION),
            (DriverError("fault", 0x80040500), OutcomeCategory.UNCLASSIFIED),
        ],
    )
    def test_semantic_category(self, native, exc, category):
        """Native codes and typed errors map to the same family."""
        assert native.classify("M", exc, METHOD, Requiredness.MANDATORY).category is category

    def test_classification_is_pure(self, native):
        """The same input always yields the same outcome."""
        exc = InvalidValueError("x")
        first = native.classify("M", exc, METHOD, Requiredness.OPTIONAL)
        second = native.classify("M", exc, METHOD, Requiredness.OPTIONAL)
        assert first == second


# =============================================================================
# Error codes and naming
# =============================================================================


class TestErrorCodes:
    """Tests for the injectable code table."""

    def test_extra_codes_are_recognised(self):
        """A driver's private number can be mapped onto a family."""
        codes = ErrorCodes().with_extra(invalid_value={0x80040404})
        classifier = ExceptionClassifier(codes=codes)

        assert classifier.is_invalid_value(NativeError(0x80040404))
        assert not ExceptionClassifier().is_invalid_value(NativeError(0x80040404))

    def test_with_extra_keeps_defaults(self):
        """Adding codes does not drop the contract numbers."""
        codes = ErrorCodes().with_extra(not_implemented={0x80040999})
        assert NOT_IMPLEMENTED in codes.not_implemented
        assert 0x80040999 in codes.not_implemented

    def test_exception_name_forms(self, native):
        """Display names for the different exception shapes."""
        assert native.exception_name(DriverError("x", 0x80040500), METHOD) == (
            "DriverError(0x80040500)"
        )
        assert native.exception_name(InvalidValueError(), METHOD) == "InvalidValueError"
        assert native.exception_name(NativeError(INVALID_VALUE), METHOD) == (
            "InvalidValueError (native error: 0x80040401)"
        )
        assert native.exception_name(ValueError(), METHOD) == "builtins.ValueError exception"


class TestShapeHints:
    """Tests for the invalid-value and invalid-operation shape hints."""

    @pytest.mark.parametrize(
        "exc",
        [
            InvalidOperationError(),
            RuntimeError("bad"),
            DriverError("bad", INVALID_VALUE),
        ],
    )
    def test_invalid_value_wrong_shapes(self, native, exc):
        """Invalid values delivered in another family produce one issue."""
        issues = native.invalid_value_shape_issues("Position", exc)

        assert len(issues) == 1
        assert issues[0].verdict is Verdict.ISSUE
        assert issues[0].category is OutcomeCategory.INVALID_VALUE

    @pytest.mark.parametrize(
        "exc", [InvalidValueError(), NativeError(INVALID_VALUE), NotImplementedError()]
    )
    def test_invalid_value_acceptable_shapes(self, native, exc):
        """The typed form, the native code and unrelated errors produce nothing."""
        assert native.invalid_value_shape_issues("Position", exc) == []

    def test_invalid_operation_wrong_shapes(self, native):
        """DriverError with the invalid-operation number should be typed."""
        issues = native.invalid_operation_shape_issues(
            "Move", DriverError("no", INVALID_OPERATION)
        )

        assert len(issues) == 1
        assert "please use InvalidOperationError" in issues[0].message
        assert native.invalid_operation_shape_issues("Move", InvalidOperationError()) == []
