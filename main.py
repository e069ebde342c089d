import argparse
import sys
from pathlib import Path
from typing import List, Optional

from configuration import Configuration as Config
from models.enums import SymlinkPolicy
from timer import Timer
from tools import archive_downloader, archive_extractor, attestation_fetcher, relationship_resolver, sbom_parser
from loggers.main_logger import main_logger as logger


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="sbomfetch",
        description="Download and extract the source tarballs referenced by an SPDX SBOM.",
        epilog=(
            "Examples:\n"
            "  sbomfetch sbom.json ./downloads\n"
            "  sbomfetch cgr.dev/chainguard/unbound:latest ./downloads\n"
            "  sbomfetch cgr.dev/chainguard/unbound:latest"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("sbom_input", metavar="<sbom-file.json|container-image>")
    ap.add_argument("download_dir", nargs="?", default=None, metavar="download-directory")
    ap.add_argument(
        "--concurrency",
        type=int,
        default=Config.download_concurrency,
        help="Number of concurrent downloads (default: %(default)s).",
    )
    ap.add_argument(
        "--platform",
        default=Config.default_platform,
        help="Platform for container image (default: %(default)s).",
    )
    ap.add_argument(
        "--extract-workers",
        type=int,
        default=Config.extract_workers,
        help="Number of archives extracted in parallel (default: %(default)s).",
    )
    ap.add_argument(
        "--symlink-policy",
        choices=[m.value for m in SymlinkPolicy],
        default=SymlinkPolicy.parse(Config.symlink_policy).value,
        help="How symlinks inside archives are materialized (default: %(default)s).",
    )
    ap.add_argument(
        "--strict",
        action="store_true",
        default=Config.strict_relationships,
        help="Fail when a GENERATED_FROM relation points at a missing or location-less source package.",
    )
    return ap


def load_sbom(sbom_input: str, download_dir: Path, platform: str) -> bytes:
    if attestation_fetcher.is_container_image(sbom_input):
        print(f"Retrieving SBOM from container image: {sbom_input}")
        sbom_data = attestation_fetcher.fetch_document(sbom_input, platform)

        sbom_path = Path(download_dir, Config.sbom_file_name)
        sbom_path.write_bytes(sbom_data)
        print(f"SBOM saved to: {sbom_path}")
        return sbom_data

    print(f"Reading SBOM from file: {sbom_input}")
    return Path(sbom_input).read_bytes()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if args.concurrency < 1 or args.extract_workers < 1:
        logger.error("--concurrency and --extract-workers must be at least 1")
        return 1

    if args.download_dir:
        download_dir = Path(args.download_dir)
    elif attestation_fetcher.is_container_image(args.sbom_input):
        download_dir = Path(attestation_fetcher.default_download_dir(args.sbom_input))
    else:
        logger.error("Error: download directory is required for SBOM files")
        return 1

    archives_dir = Path(download_dir, Config.archives_dir_name)
    try:
        archives_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Error creating download directory %s: %s", archives_dir, e)
        return 1

    try:
        sbom_data = load_sbom(args.sbom_input, download_dir, args.platform)
    except attestation_fetcher.AttestationError as e:
        logger.error("Error retrieving SBOM from sigstore: %s", e)
        return 1
    except OSError as e:
        logger.error("Error reading SBOM file: %s", e)
        return 1

    try:
        document = sbom_parser.parse_sbom_bytes(sbom_data, source=args.sbom_input)
        tasks = relationship_resolver.resolve(document.packages, document.relationships, strict=args.strict)
    except (sbom_parser.SbomParseError, relationship_resolver.RelationshipValidationError) as e:
        logger.error("Error extracting package mappings: %s", e)
        return 1

    print(f"Found {len(tasks)} populated downloadLocation URLs")
    if not tasks:
        print("No tarball URLs found to download")
        return 0

    download_timer = Timer(logger)
    download_timer.start("starting download timer")
    download_summary = archive_downloader.download_concurrently(tasks, archives_dir, args.concurrency)
    download_timer.stop("stopping download timer")
    print(f"Download complete. Files saved to: {download_dir}")
    logger.info(download_timer.elapsed("Elapsed time for downloads:"))

    print(f"Extracting {len(download_summary.files)} archives...")
    extract_timer = Timer(logger)
    extract_timer.start("starting extraction timer")
    extraction_summary = archive_extractor.extract_archives(
        download_summary.files,
        download_summary.file_packages,
        download_dir,
        args.extract_workers,
        symlink_policy=args.symlink_policy,
    )
    extract_timer.stop("stopping extraction timer")
    print(f"Extraction complete. Archives extracted to: {download_dir}")
    logger.info(extract_timer.elapsed("Elapsed time for extraction:"))

    print("\n=== EXECUTION SUMMARY ===")
    print(
        f"Downloads: {download_summary.success_count} successful, "
        f"{download_summary.failure_count} failed (total: {download_summary.total})"
    )
    print(
        f"Extractions: {extraction_summary.success_count} successful, "
        f"{extraction_summary.failure_count} failed (total: {extraction_summary.total})"
    )
    for outcome in archive_downloader.failed_outcomes(download_summary):
        print(f"  download failed: {outcome.url}: {outcome.error}")
    for result in extraction_summary.results:
        if not result.ok:
            print(f"  extraction failed: {result.archive.name}: {result.error}")
        elif result.skipped:
            print(f"  {result.archive.name}: skipped {len(result.skipped)} unsafe entries")
    return 0


if __name__ == "__main__":
    sys.exit(main())
