import os
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple


def _env_assignment(line: str) -> Optional[Tuple[str, str]]:
    """`KEY=value` or `export KEY="value"` -> (KEY, value); None for anything else."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    name, sep, value = line.partition("=")
    if not sep:
        return None
    name = name.strip()
    if name.startswith("export "):
        name = name[len("export "):].strip()
    if not name:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return name, value


def read_env_lines(lines: Iterable[str]) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for line in lines:
        pair = _env_assignment(line)
        if pair is not None:
            found[pair[0]] = pair[1]
    return found


def load_env_file(path: Path) -> int:
    """Copy settings from `path` into os.environ without overriding; returns how many were set."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return 0
    applied = 0
    for name, value in read_env_lines(text.splitlines()).items():
        if name not in os.environ:
            os.environ[name] = value
            applied += 1
    return applied


# Tests configure the environment themselves
if not (os.getenv("PYTEST_CURRENT_TEST") or "pytest" in sys.modules):
    load_env_file(Path(os.getenv("COSMOS_ENV_FILE", ".env")))
