"""
scangate — control plane

File: src/scangate/control_plane/__init__.py

Purpose
- Run aggregate, layer-by-layer scheduler and result aggregation.
"""

from scangate.control_plane.aggregator import (
    PipelineSummary,
    ResultAggregator,
    StageSummary,
    band_counts,
    severity_band,
)
from scangate.control_plane.run import PipelineRun, compute_verdict
from scangate.control_plane.scheduler import PipelineScheduler, SchedulerSettings, run_pipeline

__all__ = [
    "PipelineRun",
    "PipelineScheduler",
    "PipelineSummary",
    "ResultAggregator",
    "SchedulerSettings",
    "StageSummary",
    "band_counts",
    "compute_verdict",
    "run_pipeline",
    "severity_band",
]
