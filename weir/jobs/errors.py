"""Error types for ingestion job coordination."""

from __future__ import annotations


class JobNotFoundError(LookupError):
    """Raised when an ingestion job id does not exist."""

    def __init__(self, job_id: str) -> None:
        """Record the missing job id."""
        self.job_id = job_id
        super().__init__(f"Ingestion job {job_id} not found")


class JobTransitionError(RuntimeError):
    """Raised when a requested state change is not allowed.

    Attributes
    ----------
    job_id
        Job the transition was attempted on.
    current
        Status the job was in.
    target
        Status the caller asked for.

    """

    def __init__(self, message: str, *, job_id: str, current: str, target: str) -> None:
        """Store the transition details for callers and error handlers."""
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(message)

    @classmethod
    def invalid(cls, job_id: str, current: str, target: str) -> JobTransitionError:
        """Create an error for a transition outside the job state machine."""
        return cls(
            f"Ingestion job {job_id} cannot move from {current} to {target}",
            job_id=job_id,
            current=current,
            target=target,
        )
