"""blockflow - a workflow execution engine for graphs of typed blocks."""

__version__ = "0.1.0"
