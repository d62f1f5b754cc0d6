"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, TaskPriority)
- task_store.py: SQLite-backed storage + query/update helpers
- overdue.py: start-of-day / overdue rules and the adaptive delay policy
- sweeper.py: one overdue pass (find + bulk mark)
- task_scheduler.py: fallback + adaptive timers and the immediate trigger
- task_api.py: task operations used by commands/handlers
"""
