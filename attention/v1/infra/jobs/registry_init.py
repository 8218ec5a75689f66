"""
Executor registry initialization.

Registers the AI executors with the global executor registry.
"""

import logging

from attention.config.settings import ExecutorType, settings
from attention.v1.core.registries import executor_registry
from attention.v1.infra.jobs.executor import OpenAIExecutor, StubExecutor

logger = logging.getLogger(__name__)


def register_executors() -> None:
    """Register all executors with the executor registry."""

    logger.info("Registering executors")

    executor_registry.register(ExecutorType.STUB.value, StubExecutor())
    executor_registry.register(ExecutorType.OPENAI.value, OpenAIExecutor(settings))

    logger.info(
        "Executors registered", extra={"registered_executors": executor_registry.list()}
    )


# Auto-register executors when module is imported
register_executors()
