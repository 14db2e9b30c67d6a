"""goalcoach: goal-driven task list kept in sync with a real-time document store."""

__version__ = "0.1.0"
