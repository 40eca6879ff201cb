# logs.py

import logging

LOG_FORMAT = '[%(asctime)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


class CustomFormatter(logging.Formatter):
    """A custom formatter that allows for timestamp-free messages."""
    def format(self, record):
        if hasattr(record, 'plain') and record.plain:
            return record.getMessage()
        return super().format(record)


class QueueHandler(logging.Handler):
    """A custom logging handler that puts messages into a queue."""
    def __init__(self, log_queue):
        super().__init__()
        self.log_queue = log_queue

    def emit(self, record):
        self.log_queue.put(self.format(record))


def setup_plain_console_logging(debug=False):
    """Sets up the root logger to use the custom formatter for console output."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(logging.StreamHandler())
    # Replace the default handler's formatter with our custom one
    root_logger.handlers[0].setFormatter(CustomFormatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)


def log_separator():
    logging.info('-' * 60, extra={'plain': True})
