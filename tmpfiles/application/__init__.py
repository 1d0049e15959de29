"""
Application Services Layer

Coordinates the byte store and metadata store into the storage use cases.
"""

from .dependency_container import DependencyContainer, DependencyNotFoundError
from .lifecycle_sweeper import LifecycleSweeper, SweepSummary
from .storage_orchestrator import StorageOrchestrator

__all__ = [
    'DependencyContainer',
    'DependencyNotFoundError',
    'LifecycleSweeper',
    'StorageOrchestrator',
    'SweepSummary',
]
