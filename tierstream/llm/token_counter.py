"""
Length-based output-token estimation.

Providers that only report usage at the end of a stream still need a live
output counter for the client meter.  Each text delta contributes
``ceil(len(text) / 4)`` to a ``TokenTally`` owned by the caller.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

TokenEstimator = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Return ``ceil(len(text) / 4)``; zero for empty text."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


@dataclass
class TokenTally:
    """
    Running output-token counter passed by reference into a single request.

    Not safe to share between concurrent requests.
    """

    value: int = 0

    def add(self, text: str, estimator: TokenEstimator = estimate_tokens) -> int:
        self.value += estimator(text)
        return self.value
