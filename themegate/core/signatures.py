"""Failure signatures matched against dev server output."""

from __future__ import annotations

import re
from collections.abc import Iterable


class ErrorSignatures:
    """Case-insensitive matcher over a fixed set of regex fragments."""

    def __init__(self, fragments: Iterable[str]) -> None:
        self.fragments = list(fragments)
        if not self.fragments:
            raise ValueError("at least one signature fragment is required")
        self._pattern = re.compile("|".join(f"(?:{f})" for f in self.fragments), re.IGNORECASE)

    def search(self, text: str) -> bool:
        return self._pattern.search(text) is not None

    def matching_lines(self, text: str) -> list[str]:
        """Return the stripped lines of text that contain a signature."""
        return [line.strip() for line in text.splitlines() if self._pattern.search(line)]

    def __repr__(self) -> str:
        return f"ErrorSignatures({self.fragments!r})"
