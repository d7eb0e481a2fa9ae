"""Run the pagevault HTTP API under uvicorn."""

import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

APP_IMPORT = "src.api.main:app"
BACKEND_DIR = str(Path(__file__).resolve().parent)
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Configure logging and serve the document store API."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_level not in LOG_LEVELS:
        log_level = "INFO"
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting pagevault API on %s:%s (reload=%s)", host, port, reload)

    uvicorn.run(
        APP_IMPORT,
        app_dir=BACKEND_DIR,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )


def main() -> None:
    # HOST/PORT override the defaults, e.g. PORT=3001 python main.py
    run_server(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=_env_flag("RELOAD"),
    )


if __name__ == "__main__":
    main()
