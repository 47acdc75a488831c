"""SD Studio - FastAPI REST API layer.

This package contains the FastAPI application that acts as the composition
root for the generation lifecycle, the Pydantic request models, and the
Server-Sent Events helpers used for progress streaming.

Modules
-------
main
    Application factory, route handlers and the ``main()`` CLI entry point.
models
    Pydantic models for API request validation.
streaming
    SSE frame formatting.
"""
