import datetime
import decimal
import math
from typing import Any

from returns.maybe import Maybe, Nothing, Some

from stax.common import StaxError

EPSILON = 1e-9

_EPOCH_DATE = datetime.date(1970, 1, 1)


def is_eq(a: float, b: float, tol: float = EPSILON) -> bool:
    """
    Determine whether two floating-point numbers are equal within a specified tolerance.

    Parameters:
        a (float): First value to compare.
        b (float): Second value to compare.
        tol (float): Maximum allowed absolute difference for equality.

    Returns:
        True if the absolute difference between `a` and `b` is less than `tol`, False otherwise.
    """

    return abs(a - b) < tol


def is_within(delta: float, lower: float, upper: float) -> bool:
    """
    Determine whether a difference lies within the closed interval [lower, upper].

    The comparison is inclusive at both ends, so a difference exactly equal
    to a bound passes.

    Parameters:
        delta (float): Difference to test, usually estimated - actual.
        lower (float): Lower bound of the interval.
        upper (float): Upper bound of the interval.

    Returns:
        bool: `true` if `lower <= delta <= upper`, `false` otherwise.
    """
    return lower <= delta <= upper


def relative_scale(actual: float) -> float:
    """
    Denominator used by relative error checks.

    The scale floors at 1 so that an actual value of zero never divides by zero:
    for actual == 0 a relative bound degenerates to an absolute one.
    """
    return max(abs(actual), 1.0)


def validate_bound(value: float, name: str) -> float:
    """Check that an error bound is a finite number and return it as float."""
    try:
        bound = float(value)
    except (TypeError, ValueError) as e:
        raise StaxError(f"{name} must be a number, got {value!r}") from e

    if not math.isfinite(bound):
        raise StaxError(f"{name} must be finite, got {value!r}")
    return bound


def as_double(value: Any) -> Maybe[float]:
    """
    Convert a scalar produced by the engine into a comparable float.

    Numbers and decimals convert directly, booleans to 0/1, dates to days since
    the Unix epoch and timestamps to epoch seconds. NULL, NaN and every other
    type (strings, blobs, nested values) have no numeric interpretation and
    yield Nothing.

    Args:
        value: Scalar read from a result set or a statistics string.

    Returns:
        Some(float) when the value has a numeric interpretation, Nothing otherwise.
    """
    if value is None:
        return Nothing

    if isinstance(value, bool):
        return Some(1.0 if value else 0.0)

    if isinstance(value, (int, float, decimal.Decimal)):
        result = float(value)
        if math.isnan(result):
            return Nothing
        return Some(result)

    # datetime is a subclass of date, check it first
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return Some(value.timestamp())

    if isinstance(value, datetime.date):
        return Some(float((value - _EPOCH_DATE).days))

    return Nothing


def parse_double(text: str) -> Maybe[float]:
    """
    Parse a statistics boundary rendered as text.

    Accepts plain numbers ("-7.00", "1e3"), ISO dates and ISO timestamps, and
    returns Nothing for anything else (e.g. string column boundaries).
    """
    text = text.strip()
    if not text:
        return Nothing

    try:
        return as_double(float(text))
    except ValueError:
        pass

    try:
        if " " in text or "T" in text:
            return as_double(datetime.datetime.fromisoformat(text))
        return as_double(datetime.date.fromisoformat(text))
    except ValueError:
        return Nothing
