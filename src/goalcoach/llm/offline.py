# src/goalcoach/llm/offline.py

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class OfflineSuggestionService:
    """
    Offline deterministic AI coach used for demos when no external API is configured.

    Returns `count` generic next steps built from the goal text, so the
    stage/accept/reject flow can be tried without network access.
    """

    TEMPLATES = (
        "Write down what finishing \"{goal}\" looks like in one sentence",
        "List the three biggest obstacles to \"{goal}\"",
        "Pick the smallest next step toward \"{goal}\" and do it today",
        "Block 30 minutes in your calendar for \"{goal}\" this week",
        "Ask one person for feedback on your progress toward \"{goal}\"",
        "Review what you finished for \"{goal}\" and drop one stale task",
    )

    def __init__(self, count: int = 5) -> None:
        self.count = max(1, int(count))

    async def suggest(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        goal = str(payload.get("goalText") or "").strip() or "your goal"
        n = len(self.TEMPLATES)
        return {"tasks": [self.TEMPLATES[i % n].format(goal=goal) for i in range(self.count)]}
