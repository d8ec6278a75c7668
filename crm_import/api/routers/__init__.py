"""
FastAPI routers for the import service.

Each router covers one resource: the import actions per entity type and the
history of committed import attempts.
"""
