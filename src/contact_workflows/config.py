"""Engine configuration."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["EngineConfig"]


@dataclass(frozen=True)
class EngineConfig:
    """Tunables of the execution coordinator and its collaborators.

    Attributes:
        max_inline_steps: How many synchronous steps one job may run before the
            rest of the path is handed back to the queue.
        max_attempts: Deliveries of a step with a transient failure before the
            execution is failed.
        retry_backoff_ms: Base delay of the exponential retry backoff.
        default_wait_timeout_ms: Timeout of WAIT_FOR_EVENT steps that set none.
        webhook_timeout_s: Request timeout of WEBHOOK steps.
        stale_visit_ms: Idle time after which a RUNNING visit whose worker
            disappeared may be taken over by a reissued job.
        log_level: Level passed to ``configure_logging``.
        json_logs: Render logs as JSON instead of console output.
    """

    max_inline_steps: int = 25
    max_attempts: int = 3
    retry_backoff_ms: int = 2000
    default_wait_timeout_ms: int = 7 * 24 * 60 * 60 * 1000
    webhook_timeout_s: float = 10.0
    stale_visit_ms: int = 5 * 60 * 1000
    log_level: str = "INFO"
    json_logs: bool = False

    def retry_delay_ms(self, attempt: int) -> int:
        """Backoff before the delivery following ``attempt``.

        Args:
            attempt: The attempt that just failed, starting at 1.

        Returns:
            Delay in milliseconds.
        """
        return self.retry_backoff_ms * 2 ** max(attempt - 1, 0)
