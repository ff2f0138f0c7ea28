"""
Pipeline definitions, one per job type.
"""

from typing import Dict

from studio_backend.jobs.models import JobType
from studio_backend.pipelines.ads import AdGenerationPipeline
from studio_backend.pipelines.audience_images import AudienceImagePipeline
from studio_backend.pipelines.base import PipelineDefinition
from studio_backend.pipelines.competitors import CompetitorAnalysisPipeline
from studio_backend.pipelines.personas import PersonaGenerationPipeline
from studio_backend.pipelines.ugc_video import UGCVideoPipeline


PIPELINES: Dict[JobType, PipelineDefinition] = {
    pipeline.job_type: pipeline
    for pipeline in (
        CompetitorAnalysisPipeline(),
        PersonaGenerationPipeline(),
        AudienceImagePipeline(),
        AdGenerationPipeline(),
        UGCVideoPipeline(),
    )
}


def get_pipeline(job_type: JobType) -> PipelineDefinition:
    return PIPELINES[JobType(job_type)]


__all__ = [
    "PIPELINES",
    "get_pipeline",
    "PipelineDefinition",
    "CompetitorAnalysisPipeline",
    "PersonaGenerationPipeline",
    "AudienceImagePipeline",
    "AdGenerationPipeline",
    "UGCVideoPipeline",
]
