"""Notation error classes with position support."""

from stax.common import StaxError


class NotationSyntaxError(StaxError):
    """Malformed metric or strategy notation."""

    def __init__(
        self,
        message: str,
        text: str | None = None,
        column: int | None = None,
        suggestion: str | None = None,
    ):
        self.message = message
        self.text = text
        self.column = column
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [f"error: {self.message}"]

        if self.text is not None:
            parts.append(f"   | {self.text}")
            if self.column is not None and self.column > 0:
                # column is 1-based
                parts.append("   | " + " " * (self.column - 1) + "^")

        if self.suggestion:
            parts.append(f"   = help: {self.suggestion}")

        return "\n".join(parts)
