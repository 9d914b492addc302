"""Exception classification.

Maps an error caught from a device call onto a small verdict taxonomy.
Failures reach the harness in three shapes:

1. a native numeric code on a generic wrapper (``NativeError``),
2. a typed exception from the device contract (``InvalidValueError``),
3. a platform-generic exception with the right meaning but the wrong
   family (builtin ``NotImplementedError``, ``RuntimeError``).

Shapes 1 and 2 are equivalent when their meaning matches. Shape 3, and a
typed error of the wrong member kind, are reported as shape mismatches.
This cross-checking is where most reported issues come from.

Everything here is pure: the same exception, member kind and
requiredness always produce the same ``ClassifiedOutcome``. The numeric
codes come from an injectable ``ErrorCodes`` table because some drivers
use their own numbers for the same meaning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from device_conform.drivers.exceptions import (
    INVALID_OPERATION,
    INVALID_VALUE,
    NOT_IMPLEMENTED,
    VALUE_NOT_SET,
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

__all__ = [
    "Requiredness",
    "MemberKind",
    "Verdict",
    "OutcomeCategory",
    "ClassifiedOutcome",
    "ErrorCodes",
    "ExceptionClassifier",
]


class Requiredness(Enum):
    """Declared obligation level of a checked member."""

    OPTIONAL = "Optional"
    MANDATORY = "Mandatory"
    MUST_BE_IMPLEMENTED = "MustBeImplemented"
    MUST_NOT_BE_IMPLEMENTED = "MustNotBeImplemented"


class MemberKind(Enum):
    """Whether a member is a property or a method."""

    PROPERTY = "Property"
    METHOD = "Method"


class Verdict(Enum):
    """Outcome severity. Ordered: OK < INFO < ISSUE < ERROR."""

    OK = 0
    INFO = 1
    ISSUE = 2
    ERROR = 3

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Verdict):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Verdict):
            return NotImplemented
        return self.value <= other.value


class OutcomeCategory(Enum):
    """Semantic family of a classified failure."""

    NOT_IMPLEMENTED = "NotImplemented"
    WRONG_NOT_IMPLEMENTED_SHAPE = "WrongNotImplementedShape"
    INVALID_VALUE = "InvalidValue"
    INVALID_OPERATION = "InvalidOperation"
    NOT_SET = "NotSet"
    UNCLASSIFIED = "Unclassified"
    TIMEOUT = "Timeout"
    POSTCONDITION_MISMATCH = "PostconditionMismatch"


@dataclass(frozen=True)
class ClassifiedOutcome:
    """Result of classifying one failed call."""

    member_name: str
    category: OutcomeCategory
    verdict: Verdict
    message: str


@dataclass(frozen=True)
class ErrorCodes:
    """Native error numbers treated as each semantic family.

    Defaults follow the device contract. Drivers that use private
    numbers for the same meaning get extra entries, e.g. a focuser
    driver reporting invalid values as 0x80040404.

    Attributes:
        not_implemented: Codes meaning "member not implemented".
        invalid_value: Codes meaning "value out of range".
        invalid_operation: Codes meaning "not valid in this state".
        not_set: Codes meaning "read before set".
        names: Display names for codes, used in messages.
    """

    not_implemented: frozenset[int] = frozenset({NOT_IMPLEMENTED})
    invalid_value: frozenset[int] = frozenset({INVALID_VALUE})
    invalid_operation: frozenset[int] = frozenset({INVALID_OPERATION})
    not_set: frozenset[int] = frozenset({VALUE_NOT_SET})
    names: dict[int, str] = field(
        default_factory=lambda: {
            NOT_IMPLEMENTED: "NotImplementedError",
            INVALID_VALUE: "InvalidValueError",
            VALUE_NOT_SET: "ValueNotSetError",
            INVALID_OPERATION: "InvalidOperationError",
        },
        compare=False,
        hash=False,
    )

    def with_extra(
        self,
        not_implemented: set[int] | frozenset[int] = frozenset(),
        invalid_value: set[int] | frozenset[int] = frozenset(),
        invalid_operation: set[int] | frozenset[int] = frozenset(),
        not_set: set[int] | frozenset[int] = frozenset(),
    ) -> ErrorCodes:
        """Return a copy with additional codes per family.

        Example:
            >>> codes = ErrorCodes().with_extra(invalid_value={0x80040404})
            >>> 0x80040404 in codes.invalid_value
            True
        """
        return ErrorCodes(
            not_implemented=self.not_implemented | frozenset(not_implemented),
            invalid_value=self.invalid_value | frozenset(invalid_value),
            invalid_operation=self.invalid_operation | frozenset(invalid_operation),
            not_set=self.not_set | frozenset(not_set),
            names=dict(self.names),
        )


def _is_platform_invalid_operation(exc: BaseException) -> bool:
    # NotImplementedError derives from RuntimeError but has its own meaning
    return isinstance(exc, RuntimeError) and not isinstance(exc, NotImplementedError)


def _kind_specific_name(kind: MemberKind) -> str:
    if kind is MemberKind.PROPERTY:
        return "PropertyNotImplementedError"
    return "MethodNotImplementedError"


@dataclass(frozen=True)
class ExceptionClassifier:
    """Pure classification of device exceptions.

    Attributes:
        codes: Native code table.
        technology: How the handle under test is reached. Alpaca clients
            and DriverAccess wrappers report every unimplemented member
            with the generic not-implemented error, so that shape is
            acceptable for them and a mismatch for native handles.
    """

    codes: ErrorCodes = field(default_factory=ErrorCodes)
    technology: Technology = Technology.NATIVE

    # =========================================================================
    # Predicates
    # =========================================================================

    def _native_code_in(self, exc: BaseException, codes: frozenset[int]) -> bool:
        return isinstance(exc, NativeError) and exc.code in codes

    def is_not_implemented(self, exc: BaseException) -> bool:
        """Generic not-implemented: native code or any typed form."""
        return self._native_code_in(exc, self.codes.not_implemented) or isinstance(
            exc, NotImplementedMemberError
        )

    def is_property_not_implemented(self, exc: BaseException) -> bool:
        """Property-shaped not-implemented, or a native not-implemented code."""
        return self._native_code_in(exc, self.codes.not_implemented) or isinstance(
            exc, PropertyNotImplementedError
        )

    def is_method_not_implemented(self, exc: BaseException) -> bool:
        """Method-shaped not-implemented, or a native not-implemented code."""
        return self._native_code_in(exc, self.codes.not_implemented) or isinstance(
            exc, MethodNotImplementedError
        )

    def is_invalid_value(self, exc: BaseException) -> bool:
        """Invalid-value signal in native or typed form."""
        return self._native_code_in(exc, self.codes.invalid_value) or isinstance(
            exc, InvalidValueError
        )

    def is_invalid_operation(self, exc: BaseException) -> bool:
        """Invalid-operation signal in native or typed form."""
        return self._native_code_in(exc, self.codes.invalid_operation) or isinstance(
            exc, InvalidOperationError
        )

    def is_not_set(self, exc: BaseException) -> bool:
        """Value-not-set signal in native or typed form."""
        return self._native_code_in(exc, self.codes.not_set) or isinstance(
            exc, ValueNotSetError
        )

    # =========================================================================
    # Shape hints
    # =========================================================================

    def invalid_value_shape_issues(
        self, member: str, exc: BaseException
    ) -> list[ClassifiedOutcome]:
        """Issues for invalid-value signals delivered in the wrong family.

        Returns an empty list when the shape is acceptable or unrelated.
        """
        message: str | None = None
        if isinstance(exc, InvalidOperationError):
            message = "Received InvalidOperationError rather than InvalidValueError"
        elif _is_platform_invalid_operation(exc):
            message = "Received builtin RuntimeError rather than InvalidValueError"
        elif type(exc) is DriverError and exc.number in self.codes.invalid_value:
            message = (
                f"Received DriverError(0x{exc.number:08X}), please use "
                "InvalidValueError to report invalid values"
            )
        if message is None:
            return []
        return [
            ClassifiedOutcome(
                member, OutcomeCategory.INVALID_VALUE, Verdict.ISSUE, message
            )
        ]

    def invalid_operation_shape_issues(
        self, member: str, exc: BaseException
    ) -> list[ClassifiedOutcome]:
        """Issues for invalid-operation signals delivered in the wrong family."""
        message: str | None = None
        if type(exc) is DriverError and exc.number in self.codes.invalid_operation:
            message = (
                f"Received DriverError(0x{exc.number:08X}), please use "
                "InvalidOperationError to report invalid operations"
            )
        elif _is_platform_invalid_operation(exc):
            message = "Received builtin RuntimeError rather than InvalidOperationError"
        if message is None:
            return []
        return [
            ClassifiedOutcome(
                member, OutcomeCategory.INVALID_OPERATION, Verdict.ISSUE, message
            )
        ]

    # =========================================================================
    # Naming
    # =========================================================================

    def exception_name(self, exc: BaseException, kind: MemberKind) -> str:
        """Display name of an exception, with its number where it has one.

        Example:
            >>> classifier.exception_name(DriverError("x", 0x80040500), kind)
            'DriverError(0x80040500)'
        """
        if type(exc) is DriverError:
            return f"DriverError(0x{exc.number:08X})"
        if isinstance(exc, DriverError):
            return type(exc).__name__
        if isinstance(exc, NativeError):
            known = self.codes.names.get(exc.code, type(exc).__name__)
            name = f"{known} (native error: 0x{exc.code:08X})"
            if exc.code in self.codes.not_implemented:
                name = f"{kind.value}{name}"
            return name
        return f"{type(exc).__module__}.{type(exc).__qualname__} exception"

    # =========================================================================
    # Dispatcher
    # =========================================================================

    def _kind_matches(self, exc: BaseException, kind: MemberKind) -> bool:
        if kind is MemberKind.PROPERTY and self.is_property_not_implemented(exc):
            return True
        if kind is MemberKind.METHOD and self.is_method_not_implemented(exc):
            return True
        return self.technology is Technology.ALPACA and self.is_not_implemented(exc)

    def classify(
        self,
        member: str,
        exc: BaseException,
        kind: MemberKind,
        requiredness: Requiredness,
        user_message: str = "",
    ) -> ClassifiedOutcome:
        """Classify a failed call.

        Business context: A device that legitimately lacks a feature must
        say so with the not-implemented error of the right kind. Whether
        that is a pass depends on the member's obligation level, which is
        why requiredness travels with every call.

        Args:
            member: Member (or test) name the outcome is reported under.
            exc: The caught exception.
            kind: Property or method.
            requiredness: Obligation level of the member.
            user_message: Member-specific context for the message.

        Returns:
            The classified outcome.
        """
        if self._kind_matches(exc, kind):
            name = self.exception_name(exc, kind)
            return self._not_implemented_outcome(member, name, requiredness, user_message)

        if isinstance(exc, MethodNotImplementedError) and kind is MemberKind.PROPERTY:
            return ClassifiedOutcome(
                member,
                OutcomeCategory.WRONG_NOT_IMPLEMENTED_SHAPE,
                Verdict.ISSUE,
                "Received a MethodNotImplementedError instead of a "
                "PropertyNotImplementedError",
            )
        if isinstance(exc, PropertyNotImplementedError) and kind is MemberKind.METHOD:
            return ClassifiedOutcome(
                member,
                OutcomeCategory.WRONG_NOT_IMPLEMENTED_SHAPE,
                Verdict.ISSUE,
                "Received a PropertyNotImplementedError instead of a "
                "MethodNotImplementedError",
            )
        if isinstance(exc, NotImplementedMemberError):
            if self.technology is Technology.DRIVER_ACCESS:
                # The generic shape is accepted; the obligation level still applies.
                name = self.exception_name(exc, kind)
                return self._not_implemented_outcome(member, name, requiredness, user_message)
            return ClassifiedOutcome(
                member,
                OutcomeCategory.WRONG_NOT_IMPLEMENTED_SHAPE,
                Verdict.ISSUE,
                "Received a NotImplementedMemberError instead of a "
                f"{_kind_specific_name(kind)}",
            )
        if isinstance(exc, NotImplementedError):
            return ClassifiedOutcome(
                member,
                OutcomeCategory.WRONG_NOT_IMPLEMENTED_SHAPE,
                Verdict.ISSUE,
                "Received a builtin NotImplementedError instead of a "
                f"{_kind_specific_name(kind)}",
            )
        if isinstance(exc, OperationTimeoutError):
            return ClassifiedOutcome(member, OutcomeCategory.TIMEOUT, Verdict.ERROR, str(exc))
        if isinstance(exc, PostconditionError):
            return ClassifiedOutcome(
                member, OutcomeCategory.POSTCONDITION_MISMATCH, Verdict.ERROR, str(exc)
            )

        return ClassifiedOutcome(
            member,
            self._semantic_category(exc),
            Verdict.ISSUE,
            f"Unexpected error{f' - {user_message}:' if user_message else ':'} "
            f"{self.exception_name(exc, kind)}: {exc}",
        )

    def _semantic_category(self, exc: BaseException) -> OutcomeCategory:
        if self.is_invalid_value(exc):
            return OutcomeCategory.INVALID_VALUE
        if self.is_invalid_operation(exc):
            return OutcomeCategory.INVALID_OPERATION
        if self.is_not_set(exc):
            return OutcomeCategory.NOT_SET
        return OutcomeCategory.UNCLASSIFIED

    def _not_implemented_outcome(
        self,
        member: str,
        name: str,
        requiredness: Requiredness,
        user_message: str,
    ) -> ClassifiedOutcome:
        if requiredness is Requiredness.MANDATORY:
            verdict = Verdict.ISSUE
            message = (
                f"This member is mandatory but returned a {name} error, "
                "it must function per the ASCOM specification."
            )
        elif requiredness is Requiredness.MUST_NOT_BE_IMPLEMENTED:
            verdict = Verdict.OK
            message = f"{user_message} and a {name} error was generated as expected"
        elif requiredness is Requiredness.MUST_BE_IMPLEMENTED:
            verdict = Verdict.ISSUE
            message = (
                f"{user_message} and a {name} error was returned, "
                "this method must function per the ASCOM specification."
            )
        else:
            verdict = Verdict.OK
            message = f"Optional member returned a {name} error."
        return ClassifiedOutcome(member, OutcomeCategory.NOT_IMPLEMENTED, verdict, message)
