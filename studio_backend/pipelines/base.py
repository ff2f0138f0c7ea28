"""
Pipeline definition interface.

A definition turns a validated payload into an ordered list of steps
and decides, once the steps have run, whether the job produced
anything worth calling a result.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Type

from studio_backend.jobs.executor import Step, StepContext
from studio_backend.jobs.models import JobType
from studio_backend.jobs.payloads import JobPayload, validate_payload


class PipelineDefinition(ABC):
    job_type: JobType
    payload_model: Type[JobPayload]

    def parse_payload(self, payload: Dict[str, Any]) -> JobPayload:
        """
        Raises:
            ValidationError: the stored payload no longer fits the schema
        """
        return validate_payload(self.job_type, payload)

    @abstractmethod
    def build_steps(self, payload: JobPayload, services: Any) -> List[Step]:
        ...

    @abstractmethod
    def has_output(self, context: StepContext) -> bool:
        """Whether enough survived the non-fatal steps to complete the job."""

    @abstractmethod
    def build_result(self, context: StepContext) -> Dict[str, Any]:
        """The job result, without `warnings` (the executor adds those)."""

    async def on_failed(self, context: StepContext, error: str):
        """
        Called once when the job fails, before the failure is recorded.

        Pipelines that keep their own domain record mark it failed here.
        `context.data` holds what the steps produced before the failure;
        it is empty when the job failed outside a run.
        """
