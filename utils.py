import json
import math
import os
from pathlib import Path
from typing import Union, Any, Optional


def load_env_file(filepath: Union[str, Path] = Path(".env").resolve()) -> None:
    """
    Load KEY=VALUE lines from a .env file into os.environ.

    Variables already present in the environment win over the file.
    A missing file is not an error.
    """
    path = Path(filepath)
    if not path.is_file():
        return

    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


def read_json_bytes(data: Union[bytes, str], source: str = "<bytes>") -> Any:
    """
    Parse a JSON document held in memory.

    Raises:
        ValueError: if the content is not valid JSON
    """
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {source} (line {e.lineno}, col {e.colno}): {e.msg}") from e
    except UnicodeDecodeError as e:
        raise ValueError(f"Invalid JSON in {source}: {e}") from e


def env_str(name: str, default: str) -> str:
    value = os.getenv(name, "").strip()
    return value if value else default


def env_int(name: str, default: int) -> int:
    return _coerce_int(os.getenv(name), default)


def env_float(name: str, default: float) -> float:
    return _coerce_float(os.getenv(name), default)


def env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _coerce_float(v: Any, default: float = 0.0) -> float:
    try:
        f = float(v)
        if math.isfinite(f):
            return f
        return default
    except (TypeError, ValueError):
        return default


def _coerce_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def format_package_list(packages: Optional[Any]) -> str:
    if not packages:
        return "unknown"
    return ", ".join(packages)
