"""
Transaction Graph - Source Package

Builds a typed, weighted relation graph from one user's financial
transactions, mines it for recurring behaviour and turns that into
recommendations.

DESIGN PRINCIPLES:
1. A rebuild replaces the whole graph; rerunning it is always safe
2. Never delete before the read succeeded
3. Bad rows are skipped and reported, never fatal
4. Analysis is advisory: degrade to "no insights yet", don't fail
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "txgraph developers"
