"""Storage backends and models."""

from garden_advisor.storage.base import GardenStore
from garden_advisor.storage.memory import InMemoryGardenStore
from garden_advisor.storage.models import AnalysisRecord, TaskRecord
from garden_advisor.storage.postgres import PostgresGardenStore

__all__ = [
    "AnalysisRecord",
    "GardenStore",
    "InMemoryGardenStore",
    "PostgresGardenStore",
    "TaskRecord",
]
