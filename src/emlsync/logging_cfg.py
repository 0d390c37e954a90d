"""
Logging configuration for emlsync.

Sets up a rotating log file plus console output. Modules log through
``logging.getLogger(__name__)``.
"""
import logging
import logging.handlers
from pathlib import Path

LOG_DIR = Path.home() / ".emlsync" / "logs"
LOG_FILE = LOG_DIR / "emlsync.log"

# Maximum log file size (5 MB)
MAX_LOG_SIZE = 5 * 1024 * 1024
BACKUP_COUNT = 3


def setup_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """
    Configure logging for the emlsync CLI.

    Args:
        debug: If True, log DEBUG to both file and console. Otherwise INFO goes
            to the file and only WARNING and above to the console.
        log_file: Override the log file location.
    """
    log_file = log_file or LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(fmt='%(levelname)s - %(message)s')

    file_handler = logging.handlers.RotatingFileHandler(
        filename=str(log_file),
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    # asyncio logs every slow callback at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging to %s", log_file)
