"""Stage graph construction and declarative pipeline definitions."""

from scangate.planning.definition import (
    PipelineDefinition,
    PipelineDefinitionError,
    load_pipeline_definition,
    parse_pipeline_definition,
)
from scangate.planning.stage_graph import StageGraph

__all__ = [
    "PipelineDefinition",
    "PipelineDefinitionError",
    "StageGraph",
    "load_pipeline_definition",
    "parse_pipeline_definition",
]
