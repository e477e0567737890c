"""Query surface adapters (generic ASGI and FastAPI)."""
