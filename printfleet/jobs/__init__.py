from .batch import BatchOrchestrator
from .executor import PrintExecutor
from .tracker import JobTracker

__all__ = ["BatchOrchestrator", "JobTracker", "PrintExecutor"]
