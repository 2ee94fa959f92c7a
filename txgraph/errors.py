"""
Graph Error Taxonomy

Each class maps to one failure mode of the graph pipeline and one
propagation rule:

- FetchFailure: raised, no store mutation happened
- PersistenceFailure: raised, committed batches stay in place
- MalformedInput: caught per transaction, logged, transaction skipped
- AnalysisReadFailure: caught by the service, empty result returned
- BuildTimeout: raised, safe to retry the whole rebuild
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from txgraph.models.graph import BuildResult


class GraphError(Exception):
    """Base exception for the transaction graph."""
    pass


class FetchFailure(GraphError):
    """The transaction store query failed. Nothing was deleted."""
    pass


class PersistenceFailure(GraphError):
    """
    Deleting or inserting relations failed.

    result carries the partial BuildResult when the failure happened
    during batch inserts.
    """

    def __init__(self, message: str, result: Optional["BuildResult"] = None):
        super().__init__(message)
        self.result = result


class MalformedInput(GraphError):
    """A single transaction row is unusable."""

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message)
        self.transaction_id = transaction_id


class AnalysisReadFailure(GraphError):
    """The relation set could not be read for analysis."""
    pass


class BuildTimeout(GraphError):
    """A rebuild exceeded its deadline."""
    pass
