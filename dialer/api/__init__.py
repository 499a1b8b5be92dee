"""HTTP layer: FastAPI app, metrics and stream routes."""
