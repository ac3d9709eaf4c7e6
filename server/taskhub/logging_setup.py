from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional


_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _AccessNoiseFilter(logging.Filter):
    """Deixa passar os logs do taskhub; de terceiros, apenas WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("taskhub"):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configura o logging raiz uma unica vez, antes de subir o app."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(getattr(logging, str(level or "INFO").upper(), logging.INFO))
    ch.setFormatter(fmt)
    ch.addFilter(_AccessNoiseFilter())
    root.addHandler(ch)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path / "taskhub.log"), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
