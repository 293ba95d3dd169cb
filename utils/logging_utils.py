"""
Log del módulo de estancias
Un logger raíz con archivo rotativo y un hijo por área (checkin, checkout, tolerance...)
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config import LOG_FILE, LOG_LEVEL

_ROOT_NAME = "motel_stays"


def _build_handler() -> logging.Handler:
    try:
        return RotatingFileHandler(Path(LOG_FILE), maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    except OSError:
        # Sin permisos de escritura: consola
        return logging.StreamHandler()


def _setup_root() -> logging.Logger:
    root = logging.getLogger(_ROOT_NAME)
    if root.handlers:
        return root

    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.propagate = False

    handler = _build_handler()
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    root.addHandler(handler)
    return root


_root = _setup_root()


def get_logger(area: Optional[str] = None) -> logging.Logger:
    """Logger del módulo o de un área (motel_stays.<area>)"""
    if not area:
        return _root
    return _root.getChild(area.lower())


def log_event(area: str, usuario: str, accion: str, detalle: str = "", nivel: int = logging.INFO) -> None:
    message = f"Usuario: {usuario} | Accion: {accion}"
    if detalle:
        message += f" | Detalle: {detalle}"
    get_logger(area).log(nivel, message)
