"""Run the Broker Link API with uvicorn."""

import logging

import uvicorn

from src.api.app import app
from src.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("urllib3").setLevel(logging.WARNING)


if __name__ == "__main__":
    # HOST and PORT come from the environment via Settings
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
