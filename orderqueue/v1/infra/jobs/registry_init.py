"""
Job registry initialization.

Registers all job handlers with the global job registry.
"""

import httpx

from orderqueue.config.logging import get_logger
from orderqueue.config.settings import Settings, settings
from orderqueue.v1.core.registries import JobRegistry, job_registry
from orderqueue.v1.infra.jobs.handlers import (
    CheckOrderStatusHandler,
    CreateOrderHandler,
)

logger = get_logger(__name__)


def register_job_handlers(
    registry: JobRegistry = job_registry,
    app_settings: Settings = settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobRegistry:
    """Register all job handlers with the job registry."""

    logger.info("Registering job handlers")

    # Order fulfillment handlers
    registry.register("create_order", CreateOrderHandler(app_settings, transport))
    registry.register(
        "check_order_status", CheckOrderStatusHandler(app_settings, transport)
    )

    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry


# Auto-register handlers when module is imported
if not job_registry.is_frozen() and "create_order" not in job_registry:
    register_job_handlers()
