from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class CodeBlock:
    code: str
    language: Optional[str] = None


@dataclass(frozen=True)
class ExtractionResult:
    """What the extraction collaborator returns for one fetched page."""

    title: str
    content: str
    discovered_links: List[str] = field(default_factory=list)
    code_blocks: List[CodeBlock] = field(default_factory=list)


@dataclass(frozen=True)
class PageRecord:
    job_id: str
    url: str
    final_url: str
    status_code: int
    title: str
    content: str
    fetched_at: str
    code_blocks: List[CodeBlock] = field(default_factory=list)
    discovered_links: List[str] = field(default_factory=list)
    rank: int = 0
    tags: List[str] = field(default_factory=list)
    selectors_key: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "url": self.url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "title": self.title,
            "content": self.content,
            "code_blocks": [{"language": c.language, "code": c.code} for c in self.code_blocks],
            "discovered_links": list(self.discovered_links),
            "rank": self.rank,
            "tags": sorted(self.tags),
            "selectors_key": self.selectors_key,
            "fetched_at": self.fetched_at,
        }
