"""Task-orchestration and execution-safety engine for autonomous coding agents."""

__version__ = "0.1.0"
