"""In-memory domain store and the dead-letter log."""

from task_service.storage.dead_letters import DeadLetterStore
from task_service.storage.domain_store import DomainStore

__all__ = [
    "DeadLetterStore",
    "DomainStore",
]
