"""
Transformation layer: quality scoring and normalization into observations.
"""

from quote_pipeline.transformation.quality import compute_quality_score, compute_spread
from quote_pipeline.transformation.transformer import (
    SourceTransformStats,
    TransformReport,
    Transformer,
)

__all__ = [
    "SourceTransformStats",
    "TransformReport",
    "Transformer",
    "compute_quality_score",
    "compute_spread",
]
