from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

if TYPE_CHECKING:
    from attention.v1.infra.jobs.executor import ExecutorInput, ExecutorResult

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Executor Registry - AI providers that turn insight signals into explanations
class InsightExecutor(Protocol):
    """Protocol for AI executors invoked by the job worker."""

    async def generate(self, request: "ExecutorInput") -> "ExecutorResult":
        """
        Generate a structured explanation for one product.

        Raises UpstreamError when the provider call fails and InvalidResponse
        when its output cannot be validated.
        """
        ...


class ExecutorRegistry(Registry[InsightExecutor]):
    """Registry for AI executors (stub, openai)."""

    def __init__(self):
        super().__init__("Executor")


# Global registry instances
executor_registry = ExecutorRegistry()
