"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from imageoptix.jobs.models import BatchItem
from imageoptix.processing.settings import OptimizationSettings


@dataclass(frozen=True)
class JobSubmission:
    """A registered job ready to be run."""
    job_id: str
    items: Sequence[BatchItem]
    settings: OptimizationSettings


class JobDispatcher(ABC):
    """Abstract interface for launching jobs in the background."""

    @abstractmethod
    async def submit(self, submission: JobSubmission) -> str:
        """Launch a job without waiting for it. Returns job_id."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher, draining in-flight jobs."""
        ...
