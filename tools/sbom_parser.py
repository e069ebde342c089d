from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

import utils
from models.sbom import DerivationRelationship, SbomDocument, SourcePackage
from loggers.sbom_parser_logger import sbom_parser_logger as logger


class SbomParseError(ValueError):
    """Raised when an SPDX document cannot be parsed; no partial result is produced."""


# --- SPDX JSON helpers ---

def _string_field(record: dict[str, Any], key: str, where: str) -> str:
    # SPDX producers sometimes emit null; treat it like an absent field
    v = record.get(key)
    if v is None:
        return ""
    if not isinstance(v, str):
        raise SbomParseError(f"{where}: field '{key}' must be a string, got {type(v).__name__}")
    return v


def _record_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    records = data.get(key)
    if records is None:
        return []
    if not isinstance(records, list):
        raise SbomParseError(f"'{key}' must be a list, got {type(records).__name__}")
    for i, r in enumerate(records):
        if not isinstance(r, dict):
            raise SbomParseError(f"{key}[{i}] must be an object, got {type(r).__name__}")
    return records


def _parse_package(record: dict[str, Any], index: int) -> SourcePackage:
    where = f"packages[{index}]"
    location = _string_field(record, "downloadLocation", where)
    return SourcePackage(
        spdx_id=_string_field(record, "SPDXID", where),
        name=_string_field(record, "name", where),
        download_location=location or None,
    )


def _parse_relationship(record: dict[str, Any], index: int) -> DerivationRelationship:
    where = f"relationships[{index}]"
    return DerivationRelationship(
        element_id=_string_field(record, "spdxElementId", where),
        relationship_type=_string_field(record, "relationshipType", where),
        related_element_id=_string_field(record, "relatedSpdxElement", where),
    )


def parse_sbom_bytes(data: Union[bytes, str], source: str = "<bytes>") -> SbomDocument:
    """
    Parse an SPDX JSON document into packages and relationships.

    Only the two record kinds the resolver needs are read; every other field is ignored.

    Raises:
        SbomParseError: if the JSON is invalid or the two record lists are malformed
    """
    try:
        data = utils.read_json_bytes(data, source)
    except ValueError as e:
        raise SbomParseError(f"failed to parse SBOM JSON: {e}") from e

    if not isinstance(data, dict):
        raise SbomParseError(f"failed to parse SBOM JSON: top level of {source} must be an object")

    packages = tuple(_parse_package(r, i) for i, r in enumerate(_record_list(data, "packages")))
    relationships = tuple(
        _parse_relationship(r, i) for i, r in enumerate(_record_list(data, "relationships"))
    )

    logger.debug("Parsed %d package(s) and %d relationship(s) from %s", len(packages), len(relationships), source)
    return SbomDocument(packages=packages, relationships=relationships)


def parse_sbom(sbom_path: Path, encoding: Optional[str] = None) -> SbomDocument:
    # bytes are handed to json directly so UTF-8/16/32 are all detected
    path = Path(sbom_path)
    raw = path.read_bytes() if encoding is None else path.read_text(encoding=encoding)
    return parse_sbom_bytes(raw, source=str(path))
