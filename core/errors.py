"""
Exceptions raised by the analysis pipeline.
"""


class AnalysisError(ValueError):
    """Base class for fatal analysis errors."""


class CountMatrixError(AnalysisError):
    """Malformed count matrix or sample metadata."""


class DesignError(AnalysisError):
    """Degenerate or inestimable design matrix."""


class ContrastError(AnalysisError):
    """Invalid contrast expression."""


class AnnotationError(AnalysisError):
    """Annotation table cannot be used."""
