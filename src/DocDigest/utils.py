from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from .errors import DigestInputError


def configure_logging(verbose: bool = False) -> None:
    """Console logging for the command line; HTTP client chatter stays at WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def read_text(path: Path, what: str = "File") -> str:
    path = Path(path)
    if not path.exists():
        raise DigestInputError(f"{what} not found: {path}", {"path": str(path)})
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DigestInputError(f"Unable to read {what.lower()} {path}: {exc}", {"path": str(path)}) from exc


def safe_write_text(path: Path, text: str) -> None:
    """Write the whole text in one step: temp file in the same directory, then replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
