#!/usr/bin/env python3
"""
Run script for the Transcriptor API
"""
import uvicorn

from transcriptor.config.settings import settings
from transcriptor.main import app

if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port, reload=settings.debug)
