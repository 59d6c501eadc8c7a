from .models import JobRecord, JobHandle
from .registry import InMemoryJobRegistry

__all__ = ["JobRecord", "JobHandle", "InMemoryJobRegistry"]
