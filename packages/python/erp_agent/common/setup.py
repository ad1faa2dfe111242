import logging
import os

from dotenv import load_dotenv

__all__ = ["setup"]


def setup() -> None:
    """
    Load .env and configure process-wide logging. Call once at process start.
    """
    load_dotenv()
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
