"""
Pipeline Module
"""
from .runner import DecompositionPipeline, PipelineResult
from .writer import OutputWriter

__all__ = [
    "DecompositionPipeline",
    "PipelineResult",
    "OutputWriter",
]
