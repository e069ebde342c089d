import utils
from pathlib import Path

p = Path(__file__).resolve()


class Configuration:
    # DIRECTORIES
    root_dir = Path(p.parent)

    # PROJECT SETUP
    utils.load_env_file(Path(root_dir, ".env"))
    log_dir = Path(utils.env_str("SBOMFETCH_LOG_DIR", str(Path(root_dir, "logs"))))

    # OUTPUT LAYOUT
    archives_dir_name = "archives"
    sbom_file_name = "sbom.json"
    default_download_dir_name = "sbom-download"

    # RESOLVER PROPERTIES
    no_assertion = "NOASSERTION"
    generated_from = "GENERATED_FROM"
    unknown_package_name = "unknown"
    tarball_suffixes = (".tar.gz", ".tgz", ".tar.xz", ".tar.bz2")
    strict_relationships = utils.env_bool("SBOMFETCH_STRICT_RELATIONSHIPS", False)

    # DOWNLOAD PROPERTIES
    download_concurrency = utils.env_int("SBOMFETCH_CONCURRENCY", 4)
    http_timeout_seconds = utils.env_float("SBOMFETCH_HTTP_TIMEOUT", 60.0)
    download_max_retries = utils.env_int("SBOMFETCH_MAX_RETRIES", 0)
    download_chunk_size = 1024 * 1024
    default_tarball_suffix = ".tar.gz"
    user_agent = "sbomfetch/0.1.0"

    # EXTRACTION PROPERTIES
    extract_workers = utils.env_int("SBOMFETCH_EXTRACT_WORKERS", 1)
    symlink_policy = utils.env_str("SBOMFETCH_SYMLINK_POLICY", "contain")

    # ATTESTATION PROPERTIES
    default_platform = utils.env_str("SBOMFETCH_PLATFORM", "linux/amd64")
    default_registry = "index.docker.io"
    registry_timeout_seconds = 30.0
    spdx_predicate_marker = "spdx.dev/Document"
