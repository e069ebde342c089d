from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from configuration import Configuration as Config
from models.download import DownloadTask
from models.sbom import DerivationRelationship, SourcePackage
from loggers.relationship_resolver_logger import relationship_resolver_logger as logger


class RelationshipValidationError(ValueError):
    """Raised in strict mode when GENERATED_FROM relationships point at unusable source packages."""

    def __init__(self, warnings: Sequence[str]) -> None:
        self.warnings = list(warnings)
        super().__init__(
            f"{len(self.warnings)} invalid GENERATED_FROM relationship(s):\n" + "\n".join(self.warnings)
        )


# ----------------------------
# URL filtering
# ----------------------------

def is_tarball(url: str) -> bool:
    """True if the URL path (query and fragment excluded) ends in a recognized tarball suffix."""
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    return path.endswith(Config.tarball_suffixes)


def is_fetchable_location(location: Optional[str], package_name: Optional[str] = None) -> bool:
    if not location or location == Config.no_assertion:
        return False
    if not location.lower().startswith(("http://", "https://")):
        return False
    try:
        urlparse(location)
    except ValueError as e:
        logger.warning(
            "Skipping malformed downloadLocation for package '%s': %s (%s)",
            package_name or Config.unknown_package_name, location, e,
        )
        return False
    return is_tarball(location)


# ----------------------------
# Reverse index
# ----------------------------

def _index_packages(packages: Iterable[SourcePackage]) -> Dict[str, SourcePackage]:
    # duplicate SPDXIDs are tolerated; the last one wins
    return {pkg.spdx_id: pkg for pkg in packages}


def _build_reverse_index(
    package_map: Dict[str, SourcePackage],
    relationships: Iterable[DerivationRelationship],
    warnings: Optional[List[str]] = None,
) -> Dict[str, List[str]]:
    """
    Map each source package SPDXID to the names of the packages GENERATED_FROM it.

    Relationships whose derived package is unknown are skipped without a warning.
    """
    source_to_derived: Dict[str, List[str]] = {}

    for rel in relationships:
        if not rel.is_generated_from:
            continue
        derived = package_map.get(rel.element_id)
        if derived is None:
            continue

        source_to_derived.setdefault(rel.related_element_id, []).append(derived.name)

        if warnings is None:
            continue
        source = package_map.get(rel.related_element_id)
        if source is None:
            warnings.append(
                f"Package '{derived.name}' has GENERATED_FROM relation to non-existent "
                f"source package '{rel.related_element_id}'"
            )
        elif not source.has_download_location:
            warnings.append(
                f"Package '{derived.name}' has GENERATED_FROM relation to '{source.name}' "
                f"but source package lacks downloadLocation"
            )

    return source_to_derived


def collect_relationship_warnings(
    packages: Iterable[SourcePackage],
    relationships: Iterable[DerivationRelationship],
) -> List[str]:
    warnings: List[str] = []
    _build_reverse_index(_index_packages(packages), relationships, warnings)
    return warnings


# ----------------------------
# Resolution
# ----------------------------

def resolve(
    packages: Sequence[SourcePackage],
    relationships: Sequence[DerivationRelationship],
    *,
    strict: Optional[bool] = None,
) -> List[DownloadTask]:
    """
    Turn SBOM records into one DownloadTask per distinct tarball URL.

    Each task carries the names of the packages generated from the source packages
    that point at that URL, deduplicated in first-seen order, or "unknown" when a
    source package has no GENERATED_FROM relation. Tasks are ordered by the first
    appearance of their URL in `packages`.

    Raises:
        RelationshipValidationError: only when strict mode is on and a relation is invalid
    """
    strict = Config.strict_relationships if strict is None else strict

    package_map = _index_packages(packages)
    warnings: List[str] = []
    source_to_derived = _build_reverse_index(package_map, relationships, warnings)

    if warnings:
        if strict:
            raise RelationshipValidationError(warnings)
        logger.warning("Validation warnings for GENERATED_FROM relations:")
        for w in warnings:
            logger.warning("   - %s", w)

    # insertion-ordered dicts keep both URL order and owner order deterministic
    url_to_packages: Dict[str, Dict[str, None]] = {}
    for pkg in packages:
        if not is_fetchable_location(pkg.download_location, pkg.name):
            continue
        owners = source_to_derived.get(pkg.spdx_id) or [Config.unknown_package_name]
        bucket = url_to_packages.setdefault(pkg.download_location, {})
        for name in owners:
            bucket.setdefault(name, None)

    tasks = [DownloadTask(url=url, packages=tuple(names)) for url, names in url_to_packages.items()]
    logger.info("Resolved %d tarball URL(s) from %d package(s)", len(tasks), len(packages))
    return tasks
