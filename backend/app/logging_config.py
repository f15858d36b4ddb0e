import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

FORMAT = (
    "%(asctime)s | %(levelname)-7s | %(name)s | "
    "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
)
formatter = logging.Formatter(FORMAT)


def _file_handler(path: Path, level=logging.INFO) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    for h in logger.handlers:
        if getattr(h, "baseFilename", None) == getattr(handler, "baseFilename", None):
            return
    logger.addHandler(handler)


def _attach_console(logger: logging.Logger, level=logging.INFO) -> None:
    for h in logger.handlers:
        if type(h) is logging.StreamHandler:
            return
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"))
    logger.addHandler(handler)


def setup_logging(log_dir: Path = Path("logs")) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # --- Core (app + HTTP surface) ---
    core_handler = _file_handler(log_dir / "core.log")

    core_parent = logging.getLogger("tradecast")
    _attach(core_parent, core_handler)
    _attach_console(core_parent)
    core_parent.propagate = False

    # --- Dispatch (poller, dispatcher, cache, registry, health) ---
    dispatch_handler = _file_handler(log_dir / "dispatch.log", level=logging.DEBUG)

    dispatch_parent = logging.getLogger("tradecast.dispatch")
    _attach(dispatch_parent, dispatch_handler)
    _attach_console(dispatch_parent)
    dispatch_parent.propagate = False

    # --- Uvicorn ---
    uvicorn_handler = _file_handler(log_dir / "uvicorn.log")
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        ul = logging.getLogger(name)
        _attach(ul, uvicorn_handler)
        ul.propagate = False
