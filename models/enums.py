from enum import Enum


class ArchiveFormat(Enum):
    GZIP = "gz"
    XZ = "xz"
    BZIP2 = "bz2"

    @property
    def tar_stream_mode(self) -> str:
        # Pipe modes read the archive strictly front-to-back.
        return f"r|{self.value}"


class SymlinkPolicy(Enum):
    CONTAIN = "contain"
    PRESERVE = "preserve"
    AS_FILE = "as_file"

    @classmethod
    def parse(cls, value) -> "SymlinkPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown symlink policy {value!r} (choices: {choices})") from None
