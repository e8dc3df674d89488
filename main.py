#!/usr/bin/env python3
"""Main entry point for the bounty bridge API server.

Run with: python main.py
Or with: uvicorn main:app --reload
"""

import logging
import os

import uvicorn

from bounty_bridge.api import app

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8080")),
        reload=True,
    )
