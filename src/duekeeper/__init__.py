"""duekeeper: personal task tracker with an overdue consistency engine."""

__version__ = "0.1.0"
