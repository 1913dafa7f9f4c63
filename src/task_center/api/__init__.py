"""HTTP surface: FastAPI app factory and the console page."""
