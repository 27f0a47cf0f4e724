from typing import Any, Generic, Protocol, TypeVar

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

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that execute one job type."""

    timeout_s: float | None

    def validate_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Validate a payload at submission time.

        Returns the normalized payload to persist; raises ValueError
        (or a pydantic ValidationError) when the payload is unusable.
        """
        ...

    async def handle(
        self,
        session: Any,  # AsyncSession
        ctx: Any,  # JobContext with ownership, logging and cancellation hooks
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        """
        Handle a background job.

        Args:
            session: Database session for job processing
            ctx: Context of the running job (ids, attempt, log/heartbeat hooks)
            payload: Job-specific parameters

        Returns:
            Optional result dictionary to store with the completed job
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers."""

    def __init__(self):
        super().__init__("Job")


# Global registry instance (singleton)
job_registry = JobRegistry()


def get_job_registry() -> JobRegistry:
    """Dependency injection function for the job registry."""
    return job_registry
