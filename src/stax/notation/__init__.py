"""Canonical text notation for metrics and comparison strategies."""

from stax.notation.errors import NotationSyntaxError
from stax.notation.parser import format_metric, parse_metric, parse_strategy

__all__ = ["NotationSyntaxError", "format_metric", "parse_metric", "parse_strategy"]
