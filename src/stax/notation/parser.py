"""Parser for the canonical check notation, built on Lark.

Turns text such as ``NULL_FRACTION(i_brand_id)`` or ``relativeError(0.6)``
into metric descriptors and comparison strategies.
"""

import re
from pathlib import Path
from typing import Literal

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedCharacters, UnexpectedInput, UnexpectedToken, VisitError

from stax import strategies
from stax.common import StaxError
from stax.notation.errors import NotationSyntaxError
from stax.specs import OUTPUT_ROW_COUNT, ColumnMetric, MetricDescriptor, MetricKind

# Load grammar from file
_GRAMMAR_PATH = Path(__file__).parent / "grammar.lark"
if not _GRAMMAR_PATH.exists():
    raise FileNotFoundError(f"Notation grammar file not found: {_GRAMMAR_PATH}")
_GRAMMAR = _GRAMMAR_PATH.read_text(encoding="utf-8")

# Create parser instance (cached)
_parser = Lark(
    _GRAMMAR,
    start=["metric", "strategy"],
    parser="lalr",
)

Start = Literal["metric", "strategy"]

# Human-readable names for terminals in error suggestions
_TERMINAL_NAMES = {
    "LPAR": "'('",
    "RPAR": "')'",
    "COMMA": "','",
    "IDENT": "column name",
    "QUOTED_IDENT": "quoted column name",
    "NUMBER": "number",
    "$END": "end of input",
}


@v_args(inline=True)
class NotationTransformer(Transformer):
    """Transform Lark parse trees into metrics and strategies."""

    def output_row_count(self, _keyword: Token) -> MetricDescriptor:
        return OUTPUT_ROW_COUNT

    def column_metric(self, kind: Token, column: str) -> MetricDescriptor:
        return ColumnMetric(column, MetricKind(str(kind)))

    def plain_column(self, token: Token) -> str:
        return str(token)

    def quoted_column(self, token: Token) -> str:
        return str(token)[1:-1].replace('""', '"')

    def no_error(self, _keyword: Token) -> strategies.MetricComparisonStrategy:
        return strategies.no_error()

    def absolute_error(self, _keyword: Token, bound: Token, upper: Token | None = None) -> strategies.MetricComparisonStrategy:
        return strategies.absolute_error(float(bound), float(upper) if upper is not None else None)

    def relative_error(self, _keyword: Token, bound: Token, upper: Token | None = None) -> strategies.MetricComparisonStrategy:
        return strategies.relative_error(float(bound), float(upper) if upper is not None else None)

    def default_tolerance(self, _keyword: Token) -> strategies.MetricComparisonStrategy:
        return strategies.default_tolerance()

    def no_estimate(self, _keyword: Token) -> strategies.MetricComparisonStrategy:
        return strategies.no_estimate()


def _expected(names: set[str]) -> str:
    return ", ".join(sorted(_TERMINAL_NAMES.get(name, name) for name in names)[:5])


def _parse(text: str, start: Start):
    try:
        tree = _parser.parse(text, start=start)
        return NotationTransformer().transform(tree)
    except UnexpectedCharacters as e:
        raise NotationSyntaxError(
            message=f"Unexpected character: {e.char!r}",
            text=text,
            column=e.column,
            suggestion=f"Expected one of: {_expected(e.allowed)}" if e.allowed else None,
        ) from None
    except UnexpectedToken as e:
        expected = _expected(e.expected)
        found = "end of input" if e.token.type == "$END" else repr(str(e.token))
        raise NotationSyntaxError(
            message=f"Unexpected {found}",
            text=text,
            column=len(text.rstrip()) + 1 if e.token.type == "$END" else e.column,
            suggestion=f"Expected one of: {expected}" if expected else None,
        ) from None
    except UnexpectedInput as e:
        raise NotationSyntaxError(message=str(e), text=text) from None
    except VisitError as e:
        # Semantically invalid values, e.g. a negative bound
        if isinstance(e.orig_exc, StaxError):
            raise NotationSyntaxError(message=str(e.orig_exc), text=text) from e.orig_exc
        raise


def parse_metric(text: str) -> MetricDescriptor:
    """Parse a metric written in canonical notation.

    Args:
        text: e.g. ``OUTPUT_ROW_COUNT`` or ``DISTINCT_VALUES_COUNT("Weird Name")``

    Returns:
        The metric descriptor

    Raises:
        NotationSyntaxError: If the text is not a valid metric
    """
    return _parse(text, "metric")


def parse_strategy(text: str) -> strategies.MetricComparisonStrategy:
    """Parse a comparison strategy written in canonical notation.

    Args:
        text: e.g. ``noError``, ``absoluteError(0.01)`` or ``relativeError(-0.5, 1)``

    Returns:
        The comparison strategy

    Raises:
        NotationSyntaxError: If the text is not a valid strategy
    """
    return _parse(text, "strategy")


_PLAIN_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")


def format_metric(metric: MetricDescriptor) -> str:
    """Render a metric in canonical notation, quoting the column when needed."""
    match metric:
        case ColumnMetric(column=column, kind=kind) if not _PLAIN_IDENT.fullmatch(column):
            escaped = column.replace('"', '""')
            return f'{kind}("{escaped}")'
        case _:
            return metric.name
