"""Task Service.

A task-management REST backend: tasks, projects and users behind OAuth bearer
authentication, per-token fixed-window rate limiting, and webhook delivery of
domain events.
"""

__version__ = "0.1.0"
