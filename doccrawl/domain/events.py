"""Typed lifecycle events published on the event bus."""
from dataclasses import dataclass
from typing import Optional

from doccrawl.domain.job import JobResult


@dataclass(frozen=True)
class JobStarted:
    job_id: str
    name: str
    resumed: bool = False


@dataclass(frozen=True)
class JobFinished:
    result: JobResult


@dataclass(frozen=True)
class PageFetched:
    job_id: str
    url: str
    final_url: str
    title: str
    links_found: int = 0


@dataclass(frozen=True)
class PageFailed:
    job_id: str
    url: str
    error: str
    attempts: int
    final: bool


@dataclass(frozen=True)
class CheckpointSaved:
    job_id: str
    path: str
    visited: int
    failed: int
    reason: Optional[str] = None
