import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(component)s] %(message)s"


class ComponentFilter(logging.Filter):
    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        record.component = self.component
        return True


def setup_logger(component: str, level: int | str = logging.INFO) -> logging.Logger:
    """Configure the wound_optics logger tree; module loggers propagate into it."""
    logger = logging.getLogger("wound_optics")
    logger.setLevel(level)

    if not any(isinstance(f, ComponentFilter) for h in logger.handlers for f in h.filters):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(ComponentFilter(component))
        logger.addHandler(handler)

    return logger


def add_file_handler(logger: logging.Logger, component: str, log_path: str) -> logging.FileHandler:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ComponentFilter(component))
    logger.addHandler(handler)
    return handler
