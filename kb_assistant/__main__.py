"""Serve the knowledge-base assistant with uvicorn."""

from .main import run

run()
