import logging

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR":    logging.ERROR,
    "WARNING":  logging.WARNING,
    "INFO":     logging.INFO,
    "DEBUG":    logging.DEBUG,
    "NOTSET":   logging.NOTSET,
}


def _parse_level(value: str, default: str = "INFO") -> int:
    return _LEVELS.get((value or "").strip().upper(), _LEVELS[default])


def setup_logging(level: str = "INFO") -> None:
    """
    配置根日志，可重复调用。
    已有 handler（uvicorn、pytest）时只调整级别。
    """
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(_parse_level(level))
        return

    fmt = "%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s %(message)s"
    datefmt = "%Y-%m-%dT%H:%M:%S"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))

    root.setLevel(_parse_level(level))
    root.addHandler(handler)
