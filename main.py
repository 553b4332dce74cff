"""Entry point — serve the scheduler API."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from core.logging_config import setup_json_logging  # noqa: E402
from core.settings import SchedulerSettings  # noqa: E402


def main():
    settings = SchedulerSettings.from_env()
    if settings.log_json:
        setup_json_logging(settings.log_level)
    else:
        logging.basicConfig(level=settings.log_level.upper(),
                            format="%(levelname)s  %(name)s  %(message)s")

    uvicorn.run(
        "api.server:app",
        host=os.environ.get("API_HOST", "0.0.0.0"),
        port=int(os.environ.get("API_PORT", "8080")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
