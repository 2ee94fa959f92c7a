"""Transaction relationship graph: builder, pattern analyzer, recommendations."""

from txgraph.graph.analyzer import PatternAnalyzer
from txgraph.graph.builder import GraphBuilder, adjacency_strength
from txgraph.graph.recommendations import RecommendationEngine

__all__ = [
    "GraphBuilder",
    "PatternAnalyzer",
    "RecommendationEngine",
    "adjacency_strength",
]
