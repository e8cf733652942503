import sys
from pathlib import Path
from loguru import logger


def safe_log_text(text):
    """Escape only loguru formatting characters, keep brackets intact"""
    if not isinstance(text, str):
        text = str(text)
    text = text.replace('{', '{{').replace('}', '}}')
    return text


def setup_logging(log_dir: str = "logs", level: str = "INFO"):
    """Configure structured logging"""

    def format_with_component(record):
        if log_data := str(record['extra'].get('exchange', '') or '').capitalize():
            log_data += " "

        log_data += safe_log_text(record["message"])

        return f"<green>{record['time']:HH:mm:ss}</green> | {log_data}\n"

    def format_file(record):
        return (f"{record['time']:YYYY-MM-DD HH:mm:ss} | {record['level']} | "
                f"{record['extra'].get('component', 'app')} | {safe_log_text(record['message'])}\n")

    def format_error(record):
        return (f"{record['time']:YYYY-MM-DD HH:mm:ss} | {record['level']} | "
                f"{record['extra'].get('component', 'app')} | {safe_log_text(record['message'])} | "
                f"{safe_log_text(record['exception'] or '')}\n")

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    logger.remove()

    # Console handler
    logger.add(
        sys.stdout,
        format=format_with_component,
        level=level
    )

    # File handler - DEBUG and above
    logger.add(
        log_path / "app.log",
        format=format_file,
        level="DEBUG",
        rotation="10 MB",
        retention="7 days",
        compression="zip"
    )

    # Error file handler
    logger.add(
        log_path / "errors.log",
        format=format_error,
        level="ERROR",
        rotation="5 MB",
        retention="30 days"
    )

    logger.configure(extra={"component": "app", "exchange": ""})
