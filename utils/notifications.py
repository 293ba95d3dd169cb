"""
Sink de notificaciones para el mostrador (toasts, alertas de recepción).
El núcleo solo emite; nunca consume respuesta ni depende de que la entrega funcione.
"""

import logging

from utils.logging_utils import get_logger, log_event

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

_LEVELS = {
    INFO: logging.INFO,
    SUCCESS: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}


class NotificationSink:
    def notify(self, level: str, title: str, message: str) -> None:
        raise NotImplementedError


class NullNotificationSink(NotificationSink):
    def notify(self, level: str, title: str, message: str) -> None:
        return None


class LogNotificationSink(NotificationSink):
    """Escribe las notificaciones en el log del módulo"""

    def notify(self, level: str, title: str, message: str) -> None:
        log_event("notificacion", "sistema", title, message, nivel=_LEVELS.get(level, logging.INFO))


def safe_notify(sink: NotificationSink, level: str, title: str, message: str) -> None:
    """Fire-and-forget: un sink roto se registra y se ignora"""
    if sink is None:
        return
    try:
        sink.notify(level, title, message)
    except Exception:
        get_logger("notificacion").exception("Error entregando notificación '%s'", title)
