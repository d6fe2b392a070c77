"""schemabase Package.

schemabase loads a directory tree of JSON Schema files, generates one
model per file (validation schema, storage schema, lifecycle hooks) and
serves create, retrieve, update, delete and search for every model over
HTTP, backed by SQLite.

Exported Functions:
    main: Entry point for the schemabase console command
"""
from .schemabase import main

__all__ = ["main"]
