"""日志工具：统一格式的命名 logger。"""

import logging
import os

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
_log_file: str | None = None
_default_level: int | None = None


def configure_logging(level: str | int | None = None, file: str | None = None) -> None:
    """进程级日志配置（由入口在加载配置后调用一次）。"""
    global _log_file, _default_level
    if level is not None:
        _default_level = logging.getLevelName(level.upper()) if isinstance(level, str) else int(level)
    _log_file = file or None


def setup_logger(name: str = "trading", level: int | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is None:
        level = _default_level or logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    logger.setLevel(level)
    # 每个 logger 只挂一次 handler，避免重复输出
    if logger.handlers:
        return logger
    fmt = logging.Formatter(_FORMAT)
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)
    if _log_file:
        os.makedirs(os.path.dirname(_log_file) or ".", exist_ok=True)
        fh = logging.FileHandler(_log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    logger.propagate = False
    return logger
