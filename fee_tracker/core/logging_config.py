import logging
import sys

def setup_logging(level: str = "INFO"):
    """Configure structured logging"""

    # Create formatter
    formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Uvicorn reload re-imports the app; keep a single console handler
    for handler in list(root_logger.handlers):
        if getattr(handler, "_fee_tracker", False):
            root_logger.removeHandler(handler)
    console_handler._fee_tracker = True
    root_logger.addHandler(console_handler)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger
