"""
ASGI entry point.

This module exposes the FastAPI application instance defined in the
`ficarchive.main` module so that hosting platforms (or uvicorn) can
import it from the project root:

    uvicorn main:app
"""

from ficarchive.main import app as app  # noqa: F401  re-export FastAPI instance
