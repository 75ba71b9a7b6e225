"""Entry point for running the FastAPI application."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from src.services.config import get_config  # noqa: E402

if __name__ == "__main__":
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # PORT=7860 python main.py overrides the default
    port = int(os.getenv("PORT", "8000"))

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("UVICORN_RELOAD", "false").lower() in {"1", "true", "yes"},
    )
