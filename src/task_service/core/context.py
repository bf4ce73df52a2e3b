"""Wiring of the service components and their lifecycle."""

from dataclasses import dataclass, field

from task_service.config import Settings
from task_service.core.auth import TokenValidator, build_validator
from task_service.core.rate_limiter import RateLimiter
from task_service.core.service import ProjectService, TaskService, UserService
from task_service.core.webhooks import SubscriptionRegistry, WebhookDispatcher
from task_service.storage.dead_letters import DeadLetterStore
from task_service.storage.domain_store import DomainStore
from task_service.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceContext:
    """Process-wide components shared by every request."""

    settings: Settings
    store: DomainStore
    validator: TokenValidator
    rate_limiter: RateLimiter
    dispatcher: WebhookDispatcher
    dead_letters: DeadLetterStore | None = None
    tasks: TaskService = field(init=False)
    projects: ProjectService = field(init=False)
    users: UserService = field(init=False)

    def __post_init__(self) -> None:
        self.tasks = TaskService(self.store, self.dispatcher)
        self.projects = ProjectService(self.store, self.dispatcher)
        self.users = UserService(self.store)

    async def startup(self) -> None:
        """Seed users, open the dead-letter store and start webhook workers."""
        for seed in self.settings.seed_users:
            await self.store.upsert_user(seed.id, name=seed.name, email=seed.email)
        if self.settings.seed_users:
            logger.info("users_seeded", count=len(self.settings.seed_users))

        if self.dead_letters is not None:
            await self.dead_letters.initialize()
        await self.dispatcher.start()
        logger.info("service_context_started")

    async def shutdown(self) -> None:
        """Stop workers and release connections."""
        await self.dispatcher.stop()
        await self.validator.close()
        if self.dead_letters is not None:
            await self.dead_letters.close()
        logger.info("service_context_stopped")


def build_context(
    settings: Settings,
    store: DomainStore | None = None,
    validator: TokenValidator | None = None,
    rate_limiter: RateLimiter | None = None,
    dispatcher: WebhookDispatcher | None = None,
    dead_letters: DeadLetterStore | None = None,
) -> ServiceContext:
    """Build a ServiceContext from settings, using any components passed in.

    Args:
        settings: Application settings
        store: Domain store override
        validator: Token validator override
        rate_limiter: Rate limiter override
        dispatcher: Webhook dispatcher override
        dead_letters: Dead-letter store override

    Returns:
        Unstarted ServiceContext
    """
    if dispatcher is None:
        if dead_letters is None:
            dead_letters = DeadLetterStore(settings.dead_letter_path)
        dispatcher = WebhookDispatcher(
            registry=SubscriptionRegistry(),
            dead_letters=dead_letters,
            workers=settings.webhook_workers,
            queue_size=settings.webhook_queue_size,
            timeout=settings.webhook_timeout_seconds,
            max_retries=settings.webhook_max_retries,
            base_delay=settings.webhook_retry_base_delay,
            max_delay=settings.webhook_retry_max_delay,
        )
    else:
        dead_letters = dead_letters or dispatcher.dead_letters

    return ServiceContext(
        settings=settings,
        store=store
        or DomainStore(
            default_limit=settings.page_default_limit,
            max_limit=settings.page_max_limit,
        ),
        validator=validator or build_validator(settings),
        rate_limiter=rate_limiter
        or RateLimiter(
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        dispatcher=dispatcher,
        dead_letters=dead_letters,
    )
