import contextvars
import logging
import sys
from pathlib import Path

from loguru import logger

request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default="-")


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _inject_request_id(record) -> None:
    record["extra"].setdefault("request_id", request_id_ctx.get())


def setup_logging(log_dir: str | Path, debug: bool):
    logger.remove()
    logger.configure(patcher=_inject_request_id)

    console_level = "DEBUG" if debug else "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <magenta>{extra[request_id]}</magenta> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    )

    log_file_path = Path(log_dir) / "ephemera_{time}.log"

    logger.add(
        log_file_path,
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[request_id]} | {name}:{function}:{line} | {message} | {extra}",
        rotation="00:00",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logger.debug("Logging configured", log_dir=str(log_dir), debug=debug)


async def shutdown_logging():
    logger.debug("Flushing all log messages before shutdown...")
    await logger.complete()
    logger.remove()
