"""
Heuristic token estimation and bucketed budget accounting.
"""

import math
import re
from typing import Dict, Optional

from .schemas import BudgetAllocation

_CJK_PATTERN = re.compile(r'[\u4e00-\u9fa5]')

# CJK characters pack more meaning per character than Latin text
CJK_WEIGHT = 1.5
OTHER_WEIGHT = 0.25

BUCKETS = ("system", "history", "context", "response")


class TokenBudgetManager:
    """Estimates token usage and checks it against a fixed allocation."""

    def __init__(self, allocation: Optional[BudgetAllocation] = None):
        self.allocation = allocation or BudgetAllocation()

    @property
    def total_budget(self) -> int:
        return self.allocation.total

    def allocated(self, bucket: str) -> int:
        """Allocation for a named bucket; unknown buckets get 0."""
        if bucket not in BUCKETS:
            return 0
        return getattr(self.allocation, bucket)

    def estimate(self, text: str) -> int:
        """Estimated tokens for text, rounded up. Empty text is 0."""
        if not text:
            return 0
        cjk = len(_CJK_PATTERN.findall(text))
        other = len(text) - cjk
        return math.ceil(cjk * CJK_WEIGHT + other * OTHER_WEIGHT)

    def is_over_budget(self, contexts: Dict[str, str]) -> bool:
        """
        Check named contexts against the total budget.

        Each bucket contributes at most its own allocation, so one oversized
        bucket is not counted twice against another bucket's slack.
        """
        used = 0
        for bucket, text in contexts.items():
            used += min(self.allocated(bucket), self.estimate(text))
        return used > self.total_budget

    def get_remaining_context_budget(self, system_prompt: str = "", history: str = "") -> int:
        """Context allocation left after the system prompt and history, floored at 0."""
        remaining = self.allocation.context - self.estimate(system_prompt) - self.estimate(history)
        return max(0, remaining)
