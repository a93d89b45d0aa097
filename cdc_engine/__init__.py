"""CDC materialization engine: versioned current-state store fed by change events."""

__version__ = "0.1.0"
