"""
Allow the package to be run as a module: python -m container_scheduler
"""
import logging

import uvicorn
from dotenv import load_dotenv

from .config import get_settings

if __name__ == '__main__':
    load_dotenv()
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run(
        "container_scheduler.app.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
