from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from configuration import Configuration as Config


@dataclass(frozen=True)
class SourcePackage:
    spdx_id: str
    name: str
    download_location: Optional[str] = None

    @property
    def has_download_location(self) -> bool:
        loc = self.download_location
        return bool(loc) and loc != Config.no_assertion


@dataclass(frozen=True)
class DerivationRelationship:
    # element_id is the derived (binary) package, related_element_id the source it came from
    element_id: str
    relationship_type: str
    related_element_id: str

    @property
    def is_generated_from(self) -> bool:
        return self.relationship_type == Config.generated_from


@dataclass(frozen=True)
class SbomDocument:
    packages: Tuple[SourcePackage, ...] = field(default_factory=tuple)
    relationships: Tuple[DerivationRelationship, ...] = field(default_factory=tuple)
