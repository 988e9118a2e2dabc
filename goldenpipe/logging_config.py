import logging


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
audit_logger = logging.getLogger("goldenpipe.audit")


def configure_logging(level: str = "info") -> None:
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"invalid log level {level!r}")
    root = logging.getLogger()
    root.setLevel(numeric_level)
    if not any(getattr(h, "_goldenpipe", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._goldenpipe = True  # type: ignore[attr-defined]
        root.addHandler(handler)


def audit_log(event: str, action: str, source_ip: str | None, details: str) -> None:
    audit_logger.info(
        "audit event=%s action=%s source_ip=%s details=%s",
        event,
        action,
        source_ip or "-",
        details,
    )
