"""Pipeline-side error taxonomy.

PipelineStepError is transient: raising it out of the job lets the queue
retry the run. PersistenceWarning is never raised; it is recorded on the
pipeline result when re-hosting or the database write fails after the
content was generated.
"""

from dataclasses import dataclass


class PipelineStepError(RuntimeError):
    def __init__(self, message: str, step: str):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        return f"{self.step}: {self.message}"


@dataclass(frozen=True)
class PersistenceWarning:
    step: str  # "rehost" or "persist"
    message: str

    def to_dict(self) -> dict:
        return {"step": self.step, "message": self.message}
