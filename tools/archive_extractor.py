from __future__ import annotations

import lzma
import os
import shutil
import tarfile
import zlib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from configuration import Configuration as Config
from models.enums import ArchiveFormat, SymlinkPolicy
from models.extraction import ExtractionSummary, ExtractResult
from utils import format_package_list
from loggers.archive_extractor_logger import archive_extractor_logger as logger


_SUFFIX_FORMATS: Tuple[Tuple[str, ArchiveFormat], ...] = (
    (".tar.gz", ArchiveFormat.GZIP),
    (".tgz", ArchiveFormat.GZIP),
    (".tar.xz", ArchiveFormat.XZ),
    (".tar.bz2", ArchiveFormat.BZIP2),
)

# errors that mean the compressed or tar stream itself is unreadable
_STREAM_ERRORS = (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError)


class UnsupportedArchiveError(ValueError):
    pass


class _UnsafeEntry(Exception):
    pass


def detect_format(archive_path: Union[str, Path]) -> ArchiveFormat:
    """
    Pick the decompressor from the filename suffix alone; contents are never sniffed.

    Raises:
        UnsupportedArchiveError: for any suffix other than .tar.gz, .tgz, .tar.xz, .tar.bz2
    """
    name = Path(archive_path).name.lower()
    for suffix, fmt in _SUFFIX_FORMATS:
        if name.endswith(suffix):
            return fmt
    raise UnsupportedArchiveError(f"unsupported archive format: {archive_path}")


# ----------------------------
# Path containment
# ----------------------------

def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _contained_target(root: str, real_root: str, member_name: str) -> str:
    """
    Return the normalized on-disk target for a member, or raise _UnsafeEntry.

    The lexical check rejects absolute names and ../ escapes; the second check
    rejects names that would be written through a symlink pointing outside root.
    """
    target = os.path.normpath(os.path.join(root, member_name))
    if not _is_within(target, root):
        raise _UnsafeEntry("path escapes the extraction root")
    parent = os.path.dirname(target) if target != root else target
    if not _is_within(os.path.realpath(parent), real_root):
        raise _UnsafeEntry("path resolves through a link outside the extraction root")
    return target


def _link_stays_inside(real_root: str, target: str, link_target: str) -> bool:
    """
    True if link_target, followed from the link's directory through whatever is
    already on disk, ends inside real_root.

    A ".." that follows a component which does not exist yet is refused: a link
    created later at that spot would change where the ".." lands.
    """
    path = os.sep if os.path.isabs(link_target) else os.path.dirname(target)
    for part in link_target.split("/"):
        if part in ("", "."):
            continue
        if part == ".." and not os.path.isdir(path):
            return False
        path = os.path.join(path, part)
    return _is_within(os.path.realpath(path), real_root)


# ----------------------------
# Member handlers
# ----------------------------

def _make_dir(target: str, member: tarfile.TarInfo, deferred_modes: List[Tuple[str, int]]) -> None:
    # owner rwx while the archive is being written; the recorded mode is applied afterwards
    mode = member.mode & 0o777
    os.makedirs(target, mode=mode | 0o700, exist_ok=True)
    try:
        os.chmod(target, mode | 0o700)
    except OSError as e:
        logger.debug("Could not set mode on %s: %s", target, e)
    if (mode & 0o700) != 0o700:
        deferred_modes.append((target, mode))


def _apply_dir_modes(deferred_modes: List[Tuple[str, int]]) -> None:
    # reverse entry order, so a locked parent never blocks a child's chmod
    for target, mode in reversed(deferred_modes):
        if os.path.islink(target) or not os.path.isdir(target):
            continue
        try:
            os.chmod(target, mode)
        except OSError as e:
            logger.debug("Could not set mode on %s: %s", target, e)


def _write_file(tar: tarfile.TarFile, target: str, member: tarfile.TarInfo) -> None:
    os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
    if os.path.islink(target):
        os.unlink(target)

    mode = member.mode & 0o777
    flags = os.O_CREAT | os.O_WRONLY | os.O_TRUNC | getattr(os, "O_NOFOLLOW", 0) | getattr(os, "O_BINARY", 0)
    source = tar.extractfile(member)
    fd = os.open(target, flags, mode | 0o600)
    with os.fdopen(fd, "wb") as out:
        if source is not None:
            shutil.copyfileobj(source, out, Config.download_chunk_size)
    try:
        os.chmod(target, mode)
    except OSError as e:
        logger.debug("Could not set mode on %s: %s", target, e)


def _write_symlink(
    real_root: str,
    target: str,
    member: tarfile.TarInfo,
    policy: SymlinkPolicy,
    result: ExtractResult,
) -> None:
    os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)

    if policy is SymlinkPolicy.AS_FILE:
        if os.path.islink(target):
            os.unlink(target)
        with open(target, "w", encoding="utf-8") as out:
            out.write(member.linkname)
        result.files += 1
        return

    if policy is SymlinkPolicy.CONTAIN and not _link_stays_inside(real_root, target, member.linkname):
        logger.warning(
            "Warning: skipping symlink %s -> %s: target escapes the extraction root",
            member.name, member.linkname,
        )
        result.skipped.append(member.name)
        return

    try:
        os.symlink(member.linkname, target)
    except OSError as e:
        logger.warning("failed to create symlink %s -> %s: %s", member.linkname, target, e)
        result.link_failures.append(member.name)
        return
    result.symlinks += 1


# ----------------------------
# Extraction
# ----------------------------

def _extract_members(
    tar: tarfile.TarFile,
    root: str,
    policy: SymlinkPolicy,
    result: ExtractResult,
    deferred_modes: List[Tuple[str, int]],
) -> None:
    real_root = os.path.realpath(root)

    # iterating a pipe-mode TarFile yields one header at a time
    for member in tar:
        try:
            target = _contained_target(root, real_root, member.name)
        except _UnsafeEntry as e:
            logger.warning("Warning: skipping potentially dangerous path: %s (%s)", member.name, e)
            result.skipped.append(member.name)
            continue

        if member.isdir():
            if os.path.islink(target):
                logger.warning("Warning: skipping directory entry that is already a symlink: %s", member.name)
                result.skipped.append(member.name)
                continue
            _make_dir(target, member, deferred_modes)
            result.directories += 1
        elif member.isreg():
            if target == root:
                logger.warning("Warning: skipping file entry that names the extraction root: %s", member.name)
                result.skipped.append(member.name)
                continue
            _write_file(tar, target, member)
            result.files += 1
        elif member.issym():
            if target == root:
                logger.warning("Warning: skipping symlink entry that names the extraction root: %s", member.name)
                result.skipped.append(member.name)
                continue
            _write_symlink(real_root, target, member, policy, result)
        else:
            logger.debug("Ignoring unsupported tar entry type for %s", member.name)


def extract_archive(
    archive_path: Union[str, Path],
    extraction_root: Union[str, Path],
    *,
    symlink_policy: Union[SymlinkPolicy, str, None] = None,
) -> ExtractResult:
    """
    Stream one tarball into extraction_root.

    Entries that would land outside the root are skipped with a warning and the rest
    of the archive continues. An unsupported suffix or a corrupt stream ends this
    archive with a failed result; files written before the failure are left in place.
    """
    archive_path = Path(archive_path)
    result = ExtractResult(archive=archive_path)
    policy = SymlinkPolicy.parse(Config.symlink_policy if symlink_policy is None else symlink_policy)
    root = os.path.normpath(os.path.abspath(extraction_root))

    try:
        fmt = detect_format(archive_path)
    except UnsupportedArchiveError as e:
        result.error = str(e)
        return result

    deferred_modes: List[Tuple[str, int]] = []
    try:
        with open(archive_path, "rb") as f:
            with tarfile.open(fileobj=f, mode=fmt.tar_stream_mode) as tar:
                _extract_members(tar, root, policy, result, deferred_modes)
    except FileNotFoundError as e:
        result.error = f"failed to open archive: {e}"
    except _STREAM_ERRORS as e:
        result.error = f"failed to read {fmt.name.lower()} tar stream: {e}"
    except OSError as e:
        result.error = f"failed to extract {archive_path.name}: {e}"
    finally:
        _apply_dir_modes(deferred_modes)

    return result


def extract_archives(
    archive_files: Sequence[Path],
    file_packages: Dict[Path, Sequence[str]],
    extraction_root: Union[str, Path],
    workers: Optional[int] = None,
    *,
    symlink_policy: Union[SymlinkPolicy, str, None] = None,
) -> ExtractionSummary:
    """
    Extract each archive into the same root, one at a time by default.

    workers > 1 extracts that many archives in parallel; the per-archive result
    is the same either way. Results are recorded in input order.
    """
    workers = Config.extract_workers if workers is None else workers
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")

    summary = ExtractionSummary()
    total = len(archive_files)

    def _run(item: Tuple[int, Path]) -> ExtractResult:
        index, archive = item
        package_list = format_package_list(file_packages.get(archive))
        logger.info("Extracting (%d/%d): %s [%s]", index, total, Path(archive).name, package_list)
        res = extract_archive(archive, extraction_root, symlink_policy=symlink_policy)
        if res.ok:
            logger.info("Extracted: %s [%s]", Path(archive).name, package_list)
        else:
            logger.error("Error extracting %s: %s", archive, res.error)
        return res

    items = list(enumerate(archive_files, start=1))
    if workers == 1:
        results = [_run(item) for item in items]
    else:
        with ThreadPoolExecutor(max_workers=workers) as ex:
            results = list(ex.map(_run, items))

    for res in results:
        summary.record(res)
    return summary
