import io
import os
import tarfile
import tempfile
from pathlib import Path

import pytest

# must be set before configuration is first imported
os.environ.setdefault("SBOMFETCH_LOG_DIR", tempfile.mkdtemp(prefix="sbomfetch-logs-"))

_WRITE_MODES = {
    ".tar.gz": "w:gz",
    ".tgz": "w:gz",
    ".tar.xz": "w:xz",
    ".tar.bz2": "w:bz2",
}


def _mode_for(path: Path) -> str:
    name = path.name.lower()
    for suffix, mode in _WRITE_MODES.items():
        if name.endswith(suffix):
            return mode
    return "w"


def build_tar_bytes(entries, mode="w:gz") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        _add_entries(tar, entries)
    return buf.getvalue()


def _add_entries(tar: tarfile.TarFile, entries) -> None:
    """
    entries: iterable of tuples
      ("dir", name[, mode])
      ("file", name, content[, mode])
      ("symlink", name, target)
      ("hardlink", name, target)
    """
    for entry in entries:
        kind, name = entry[0], entry[1]
        info = tarfile.TarInfo(name)
        if kind == "dir":
            info.type = tarfile.DIRTYPE
            info.mode = entry[2] if len(entry) > 2 else 0o755
            tar.addfile(info)
        elif kind == "file":
            data = entry[2].encode("utf-8") if isinstance(entry[2], str) else entry[2]
            info.size = len(data)
            info.mode = entry[3] if len(entry) > 3 else 0o644
            tar.addfile(info, io.BytesIO(data))
        elif kind == "symlink":
            info.type = tarfile.SYMTYPE
            info.linkname = entry[2]
            tar.addfile(info)
        elif kind == "hardlink":
            info.type = tarfile.LNKTYPE
            info.linkname = entry[2]
            tar.addfile(info)
        else:
            raise ValueError(f"unknown entry kind {kind}")


@pytest.fixture
def make_tarball(tmp_path):
    def _make(name, entries, directory=None):
        path = Path(directory or tmp_path, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, _mode_for(path)) as tar:
            _add_entries(tar, entries)
        return path

    return _make


@pytest.fixture
def tar_bytes():
    return build_tar_bytes
