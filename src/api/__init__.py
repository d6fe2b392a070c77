"""Entity API Package.

This package serves the models of a ModelRegistry over HTTP with Flask.
Each model gets create, retrieve, update, delete and search routes backed
by the EntityStore, and entities can be returned as JSON-LD.

Key Components:
    create_app: Factory building the Flask application for a registry and store

Endpoints:
    GET /health: Health check endpoint for monitoring
    GET /models: Loaded models and their collections
    /<model> and /<model>/<id>: Entity routes

Usage:
    Start the server:
        $ schemabase

    Test with curl:
        $ curl -X POST http://localhost:5000/Quotation \
               -H "Content-Type: application/json" \
               -d '{"text": "To be, or not to be"}'
"""
from .api import create_app

__all__ = ["create_app"]
