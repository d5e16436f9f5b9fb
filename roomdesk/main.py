from __future__ import annotations

import json
import logging
import os

import uvicorn

from roomdesk.config_manager import ConfigManager


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(log_level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def main() -> None:
    config_path = os.getenv("ROOMDESK_CONFIG_PATH", "config.yaml")
    setup_logging(ConfigManager(config_path).load().logging.level)
    host = os.getenv("ROOMDESK_HOST", "0.0.0.0")
    port = int(os.getenv("ROOMDESK_PORT", "8080"))
    uvicorn.run("roomdesk.web_admin:create_app", factory=True, host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
