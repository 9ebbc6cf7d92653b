"""HTTP API layer: FastAPI application factory, dependencies and routers."""
