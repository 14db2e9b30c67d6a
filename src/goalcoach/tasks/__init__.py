"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskDraft, Priority, SortMode, Goal)
- task_store.py: live, optimistically updated task list for the active goal
- ordering.py: order index maintenance, display filtering/sorting, batch planning
- suggestions.py: AI suggestion staging and atomic adoption
- goals.py: goal document load/save
"""
