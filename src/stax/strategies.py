"""Comparison strategies judging an estimated statistic against the actual one.

A strategy is a stateless predicate over (estimated, actual) pairs that also
explains itself. Strategies are safe to share across checks and threads.

Example:
    >>> from returns.maybe import Some
    >>> relative_error(0.1).judge(Some(105.0), Some(100.0)).passed
    True
    >>> absolute_error(0.01).judge(Some(0.5), Some(0.0)).detail
    'estimated - actual = 0.5 outside [-0.01, 0.01]'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from returns.maybe import Maybe, Nothing, Some

from stax import functions
from stax.common import StaxError

# Acceptable cardinality-estimation slack for a cost-based optimizer
DEFAULT_TOLERANCE = 0.1

NO_GROUND_TRUTH = "no ground truth computed"
NO_ESTIMATE = "no estimate produced"


@dataclass(frozen=True)
class Outcome:
    passed: bool
    detail: str


@runtime_checkable
class MetricComparisonStrategy(Protocol):
    @property
    def name(self) -> str: ...

    def judge(self, estimated: Maybe[float], actual: Maybe[float], *, integral: bool = False) -> Outcome: ...


def _format(value: float) -> str:
    return f"{value:g}"


def _missing(estimated: Maybe[float], actual: Maybe[float]) -> Outcome | None:
    """Shared missing-data policy: the ground truth is checked before the estimate."""
    if actual == Nothing:
        return Outcome(False, NO_GROUND_TRUTH)
    if estimated == Nothing:
        return Outcome(False, NO_ESTIMATE)
    return None


@dataclass(frozen=True)
class NoError:
    """Estimated and actual values are equal.

    Integer-valued metrics (row and distinct counts) must match exactly;
    continuous ones are equal up to floating-point round-off.
    """

    @property
    def name(self) -> str:
        return "noError"

    def judge(self, estimated: Maybe[float], actual: Maybe[float], *, integral: bool = False) -> Outcome:
        if (missing := _missing(estimated, actual)) is not None:
            return missing

        est, act = estimated.unwrap(), actual.unwrap()
        equal = est == act if integral else functions.is_eq(est, act)
        if equal:
            return Outcome(True, "exact match")
        shown = (_format(est), _format(act))
        if shown[0] == shown[1]:
            shown = (repr(est), repr(act))
        return Outcome(False, f"estimated {shown[0]} != actual {shown[1]}")

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class AbsoluteError:
    """estimated - actual lies within [lower, upper]."""

    lower: float
    upper: float

    def __post_init__(self) -> None:
        lower = functions.validate_bound(self.lower, "Lower bound")
        upper = functions.validate_bound(self.upper, "Upper bound")
        if not lower <= 0 <= upper:
            raise StaxError(f"Absolute error bounds must satisfy lower <= 0 <= upper, got [{lower}, {upper}]")
        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)

    @property
    def name(self) -> str:
        if self.lower == -self.upper:
            return f"absoluteError({_format(self.upper)})"
        return f"absoluteError({_format(self.lower)}, {_format(self.upper)})"

    def judge(self, estimated: Maybe[float], actual: Maybe[float], *, integral: bool = False) -> Outcome:
        if (missing := _missing(estimated, actual)) is not None:
            return missing

        delta = estimated.unwrap() - actual.unwrap()
        window = f"[{_format(self.lower)}, {_format(self.upper)}]"
        if functions.is_within(delta, self.lower, self.upper):
            return Outcome(True, f"estimated - actual = {_format(delta)} within {window}")
        return Outcome(False, f"estimated - actual = {_format(delta)} outside {window}")

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RelativeError:
    """estimated - actual lies within [lower, upper] scaled by max(|actual|, 1)."""

    lower: float
    upper: float

    def __post_init__(self) -> None:
        lower = functions.validate_bound(self.lower, "Lower bound")
        upper = functions.validate_bound(self.upper, "Upper bound")
        if not lower <= 0 <= upper:
            raise StaxError(f"Relative error bounds must satisfy lower <= 0 <= upper, got [{lower}, {upper}]")
        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)

    @property
    def name(self) -> str:
        if self.lower == -self.upper:
            return f"relativeError({_format(self.upper)})"
        return f"relativeError({_format(self.lower)}, {_format(self.upper)})"

    def judge(self, estimated: Maybe[float], actual: Maybe[float], *, integral: bool = False) -> Outcome:
        if (missing := _missing(estimated, actual)) is not None:
            return missing

        est, act = estimated.unwrap(), actual.unwrap()
        scale = functions.relative_scale(act)
        delta = est - act
        lower, upper = self.lower * scale, self.upper * scale
        window = f"[{_format(lower)}, {_format(upper)}]"
        if functions.is_within(delta, lower, upper):
            return Outcome(True, f"estimated - actual = {_format(delta)} within {window}")
        return Outcome(
            False,
            f"estimated - actual = {_format(delta)} outside {window} "
            f"(relative error {_format(delta / scale)}, allowed {self.name})",
        )

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class DefaultTolerance(RelativeError):
    """Relative error with the system-wide default bound."""

    lower: float = -DEFAULT_TOLERANCE
    upper: float = DEFAULT_TOLERANCE

    @property
    def name(self) -> str:
        return "defaultTolerance"


@dataclass(frozen=True)
class NoEstimate:
    """The engine is expected not to produce an estimate at all."""

    @property
    def name(self) -> str:
        return "noEstimate"

    def judge(self, estimated: Maybe[float], actual: Maybe[float], *, integral: bool = False) -> Outcome:
        match estimated:
            case Some(value):
                return Outcome(False, f"unexpected estimate {_format(value)}")
            case _:
                return Outcome(True, "no estimate, as expected")

    def __str__(self) -> str:
        return self.name


def no_error() -> NoError:
    return NoError()


def absolute_error(bound: float, upper: float | None = None) -> AbsoluteError:
    """
    Build an absolute error strategy.

    With one argument the window is symmetric: |estimated - actual| <= bound.
    With two arguments they are the lower and upper limits of estimated - actual.
    """
    if upper is None:
        bound = functions.validate_bound(bound, "Absolute error bound")
        if bound < 0:
            raise StaxError(f"Absolute error bound must be non-negative, got {bound}")
        return AbsoluteError(-bound, bound)
    return AbsoluteError(bound, upper)


def relative_error(bound: float, upper: float | None = None) -> RelativeError:
    """
    Build a relative error strategy.

    With one argument: |estimated - actual| <= bound * max(|actual|, 1).
    With two arguments they are the lower and upper relative limits.
    """
    if upper is None:
        bound = functions.validate_bound(bound, "Relative error bound")
        if bound < 0:
            raise StaxError(f"Relative error bound must be non-negative, got {bound}")
        return RelativeError(-bound, bound)
    return RelativeError(bound, upper)


def default_tolerance() -> DefaultTolerance:
    return DefaultTolerance()


def no_estimate() -> NoEstimate:
    return NoEstimate()
