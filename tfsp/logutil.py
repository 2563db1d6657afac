from __future__ import annotations
import json, logging, os, time
from logging.handlers import RotatingFileHandler

_STD_KEYS = {
    "name","msg","args","levelname","levelno","pathname","filename","module",
    "exc_info","exc_text","stack_info","lineno","funcName","created","msecs",
    "relativeCreated","thread","threadName","processName","process","asctime",
    "taskName",
}


class JSONLFormatter(logging.Formatter):
    """One compact JSON object per log line (file sink)."""
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        for k, v in record.__dict__.items():
            if k in _STD_KEYS or k.startswith("_"):
                continue
            base[k] = v if isinstance(v, (str, int, float, bool, type(None))) else repr(v)
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, separators=(",", ":"), default=str)


class ConsoleFormatter(logging.Formatter):
    """Short timestamp + level + extras as key=value."""
    def format(self, record: logging.LogRecord) -> str:
        ts = time.strftime("%H:%M:%S", time.localtime(record.created))
        lvl = record.levelname.ljust(5)
        extras = [
            f"{k}={safe_preview(v, limit=120)}"
            for k, v in record.__dict__.items()
            if k not in _STD_KEYS and not k.startswith("_")
        ]
        extras_s = (" " + " ".join(extras)) if extras else ""
        line = f"{ts} {lvl} [{record.name}] {record.getMessage()}{extras_s}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_logger(name: str, *, level: str | None = None, log_dir: str | None = None) -> logging.Logger:
    """
    Logger with a console handler and, when a log directory is configured,
    a rotating JSONL file (<log_dir>/tfsp.log, 10MB x 5).

    Env: LOG_LEVEL, LOG_LEVEL_CONSOLE, TFSP_LOG_DIR, LOG_MAX_BYTES, LOG_BACKUP_COUNT
    """
    logger = logging.getLogger(name)
    if getattr(logger, "_logutil_configured", False):
        return logger

    logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO"))

    ch = logging.StreamHandler()
    ch.setLevel(os.getenv("LOG_LEVEL_CONSOLE", "INFO"))
    ch.setFormatter(ConsoleFormatter())
    logger.addHandler(ch)

    log_dir = log_dir or os.getenv("TFSP_LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(
            os.path.join(log_dir, "tfsp.log"),
            maxBytes=int(os.getenv("LOG_MAX_BYTES", "10485760")),
            backupCount=int(os.getenv("LOG_BACKUP_COUNT", "5")),
            encoding="utf-8",
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(JSONLFormatter())
        logger.addHandler(fh)

    logger.propagate = False
    logger._logutil_configured = True  # type: ignore[attr-defined]
    return logger


class ContextAdapter(logging.LoggerAdapter):
    """Binds persistent context (peer, user) onto every record."""
    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        return msg, kwargs


def bind(logger: logging.Logger | ContextAdapter, **ctx) -> ContextAdapter:
    if isinstance(logger, ContextAdapter):
        merged = dict(logger.extra)
        merged.update(ctx)
        return ContextAdapter(logger.logger, merged)
    return ContextAdapter(logger, ctx)


def safe_preview(val, *, limit: int = 256) -> str:
    s = str(val)
    return s if len(s) <= limit else (s[:limit] + "...")
