"""api/ -- FastAPI application and HTTP contract for appy."""
