from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class DownloadTask:
    url: str
    packages: Tuple[str, ...]


@dataclass(frozen=True)
class DownloadOutcome:
    url: str
    packages: Tuple[str, ...]
    path: Path
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DownloadSummary:
    success_count: int = 0
    failure_count: int = 0

    # successful destination paths, in completion order
    files: List[Path] = field(default_factory=list)
    file_packages: Dict[Path, Tuple[str, ...]] = field(default_factory=dict)
    outcomes: List[DownloadOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    def record(self, outcome: DownloadOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.ok:
            self.success_count += 1
            self.files.append(outcome.path)
            self.file_packages[outcome.path] = outcome.packages
        else:
            self.failure_count += 1
