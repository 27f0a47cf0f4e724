"""
Completion classification for fulfillment orders.

The fulfillment API flips an order to ``completed`` even when some of its
interactions silently failed or are still queued. ``classify_completion``
reconciles that flag with the per-interaction progress counters and returns
the verdict the rest of the system acts on.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

INTERACTION_TYPES = ("like", "save", "comment")


class InteractionProgress(BaseModel):
    """Progress counters for one interaction category."""

    model_config = ConfigDict(extra="ignore")

    total: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    remaining: int = Field(default=0, ge=0)
    percent: float = 0


@dataclass(frozen=True)
class CompletionVerdict:
    is_complete: bool
    actual_status: str
    details: dict[str, Any] = field(default_factory=dict)


def parse_progress(progress: Any) -> dict[str, InteractionProgress]:
    """
    Validate the progress block of a status payload.

    Only categories present in the payload are returned. Raises ValueError
    (pydantic's ValidationError) when a category is malformed.
    """
    if not isinstance(progress, dict):
        raise ValueError(f"progress must be an object, got {type(progress).__name__}")

    parsed = {}
    for interaction in INTERACTION_TYPES:
        raw = progress.get(interaction)
        if raw is None:
            continue
        parsed[interaction] = InteractionProgress.model_validate(raw)
    return parsed


def has_progress(progress: Any) -> bool:
    """True when any category reports completed or failed interactions."""
    if not progress:
        return False
    return any(p.completed > 0 or p.failed > 0 for p in parse_progress(progress).values())


def classify_completion(remote_status: dict[str, Any]) -> CompletionVerdict:
    """Decide whether a remote order is really done, and how it ended."""
    status = remote_status.get("status")

    if status in ("failed", "canceled"):
        return CompletionVerdict(
            is_complete=True,
            actual_status=status,
            details={"reason": f"Order {status}"},
        )

    if status != "completed":
        return CompletionVerdict(is_complete=False, actual_status="processing")

    progress = remote_status.get("progress")
    if progress is None:
        # The upstream already reported completion and gave nothing to contradict it
        return CompletionVerdict(
            is_complete=True,
            actual_status="completed",
            details={"warning": "No progress data available"},
        )

    total_requested = 0
    total_completed = 0
    total_failed = 0
    any_remaining = False
    any_success = False
    any_failure = False
    details: dict[str, Any] = {}

    for interaction, counters in parse_progress(progress).items():
        if counters.total <= 0:
            continue

        details[interaction] = counters.model_dump()
        total_requested += counters.total
        total_completed += counters.completed
        total_failed += counters.failed

        if counters.remaining > 0:
            any_remaining = True
        if counters.completed > 0:
            any_success = True
        if counters.failed > 0:
            any_failure = True

    if any_remaining:
        return CompletionVerdict(False, "processing", details)
    if total_completed == 0 and total_failed > 0:
        return CompletionVerdict(True, "failed", details)
    if any_failure and any_success:
        return CompletionVerdict(True, "completed_with_errors", details)
    if total_completed == total_requested:
        return CompletionVerdict(True, "completed", details)

    # Counters add up to nothing conclusive; trust the upstream flag
    return CompletionVerdict(status == "completed", status, details)


def ledger_status(actual_status: str) -> str:
    """Collapse classifier verdicts onto the ledger's plain status values."""
    if actual_status == "completed_with_errors":
        return "completed"
    return actual_status
