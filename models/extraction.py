from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass
class ExtractResult:
    archive: Path
    error: Optional[str] = None

    files: int = 0
    directories: int = 0
    symlinks: int = 0

    # member names refused by the containment checks
    skipped: List[str] = field(default_factory=list)
    link_failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExtractionSummary:
    success_count: int = 0
    failure_count: int = 0
    results: List[ExtractResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    def record(self, result: ExtractResult) -> None:
        self.results.append(result)
        if result.ok:
            self.success_count += 1
        else:
            self.failure_count += 1
