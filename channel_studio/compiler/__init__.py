"""Flow Compiler - translate flow graphs into engine channel documents"""
from .channel import EngineChannel, SourceStage, PipelineStage
from .compiler import FlowCompiler

__all__ = [
    "EngineChannel",
    "SourceStage",
    "PipelineStage",
    "FlowCompiler",
]
