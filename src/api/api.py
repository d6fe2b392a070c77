"""
Entity API - Flask Application.

This module exposes the models of a ModelRegistry over HTTP. Every model
gets the same set of routes, backed by its ModelCollection in the
EntityStore; request bodies are validated by the model's own hooks before
anything is written.

Endpoints:
    GET    /health              {"status": "healthy", "models": N}
    GET    /models              Model names, collections and replaced references
    POST   /<model>             Create an entity (201)
    GET    /<model>             Search entities of the model (?name=..&sameAs=..)
    GET    /<model>/<id>        Retrieve an entity (JSON, or JSON-LD on request)
    PUT    /<model>/<id>        Replace an entity's content
    DELETE /<model>/<id>        Delete an entity (204)

Content Negotiation:
    Entities are returned as JSON with "@id" and "@type". A client sending
    ``Accept: application/ld+json`` receives the JSON-LD form, which also
    carries "@context".

Error Handling:
    All errors are JSON bodies with:
    - status: "error"
    - message: Human-readable description
    - details: Violation list (validation errors only)

    - 400: Non-JSON body, malformed entity id, schema validation failure
    - 404: Unknown model or entity
    - 500: Storage failure or unexpected exception (message is sanitized)

Example:
    POST /Quotation HTTP/1.1
    Content-Type: application/json

    {"text": "To be, or not to be", "spokenByCharacter": {"name": "Hamlet"}}
"""
import logging
import sqlite3
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import get_base_url, load_config
from schema import ModelRegistry, SchemaValidationError, UnknownModelError
from storage import EntityStore, is_object_id, to_json, to_jsonld

# Logging is configured in schemabase.main() - this module uses the configured logger
logger = logging.getLogger(__name__)

JSONLD_MIMETYPE = "application/ld+json"
SEARCH_FIELDS = ("name", "sameAs")


def sanitize_error_message(error: Exception) -> str:
    """
    Map an exception to a message that is safe to return to clients.

    Database paths, SQL and other internals never leave the server; they
    are logged instead.

    Args:
        error: The exception to sanitize

    Returns:
        A safe, generic error message
    """
    if isinstance(error, sqlite3.OperationalError):
        error_str = str(error).lower()
        if "locked" in error_str or "busy" in error_str:
            return "Storage is busy, try again"
        return "Storage unavailable"
    if isinstance(error, sqlite3.Error):
        return "Storage error"
    return "Internal server error"


def error_response(message: str, status: int, details: Optional[Any] = None):
    body: Dict[str, Any] = {"status": "error", "message": message}
    if details is not None:
        body["details"] = details
    return jsonify(body), status


def wants_jsonld() -> bool:
    return JSONLD_MIMETYPE in (request.headers.get("Accept") or "")


def render_entity(entity: Dict[str, Any], status: int = 200):
    base_url = current_app.config["BASE_URL"]
    if wants_jsonld():
        response = jsonify(to_jsonld(entity, base_url))
        response.mimetype = JSONLD_MIMETYPE
        return response, status
    return jsonify(to_json(entity, base_url)), status


def create_app(registry: ModelRegistry, store: EntityStore,
               config: Optional[Dict[str, Any]] = None) -> Flask:
    """Factory function to create and configure the Flask application.

    Args:
        registry: Loaded model registry
        store: Entity store the models are bound to
        config: Optional configuration dictionary (if None, will be loaded from config.yml)

    Returns:
        Configured Flask application instance

    Example:
        >>> registry = SchemaLoader("./schemas").load()
        >>> app = create_app(registry, EntityStore("./data/entities.db"))
        >>> client = app.test_client()
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    cors_config = config.get("cors", {})
    if cors_config.get("enabled", False):
        cors_origins = cors_config.get("origins", [])
        if cors_origins:
            CORS(app, origins=cors_origins)
            logger.info(f"CORS enabled for origins: {cors_origins}")
        else:
            logger.warning("CORS enabled but no origins configured")
    else:
        logger.info("CORS is disabled in configuration")

    app.config["MODEL_REGISTRY"] = registry
    app.config["ENTITY_STORE"] = store
    app.config["BASE_URL"] = get_base_url(config)

    # Bind every model up front so collection tables exist before the first request
    collections = {name: store.bind(model) for name, model in registry.items()}
    app.config["MODEL_COLLECTIONS"] = collections
    logger.info(f"Serving {len(collections)} model(s): {', '.join(sorted(collections)) or 'none'}")

    def collection_for(model_name: str):
        try:
            return current_app.config["MODEL_COLLECTIONS"][model_name]
        except KeyError:
            raise UnknownModelError(model_name) from None

    def json_body() -> Optional[Dict[str, Any]]:
        if not request.is_json:
            return None
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else None

    @app.errorhandler(UnknownModelError)
    def handle_unknown_model(error: UnknownModelError):
        logger.info(f"Request for unknown model: {error}")
        return error_response(str(error), 404)

    @app.errorhandler(SchemaValidationError)
    def handle_validation_error(error: SchemaValidationError):
        logger.error(f"Payload validation failed: {error}")
        return error_response("Entity failed schema validation", 400,
                              [violation.to_dict() for violation in error.violations])

    @app.errorhandler(sqlite3.Error)
    def handle_storage_error(error: sqlite3.Error):
        logger.error(f"Storage error handling {request.method} {request.path}: {error}", exc_info=True)
        return error_response(sanitize_error_message(error), 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error_response(error.description or error.name, error.code or 500)
        logger.error(f"Unexpected error handling {request.method} {request.path}: {error}", exc_info=True)
        return error_response(sanitize_error_message(error), 500)

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring and load balancers.

        Example:
            $ curl http://localhost:5000/health
            {"models": 3, "status": "healthy"}
        """
        return jsonify({"status": "healthy", "models": len(current_app.config["MODEL_REGISTRY"])}), 200

    @app.route("/models", methods=["GET"])
    def list_models():
        registry = current_app.config["MODEL_REGISTRY"]
        return jsonify({"models": [registry[name].describe() for name in sorted(registry)]}), 200

    @app.route("/<model_name>", methods=["POST"])
    def create_entity(model_name: str):
        collection = collection_for(model_name)
        payload = json_body()
        if payload is None:
            logger.error(f"Received non-JSON payload for {model_name}")
            return error_response("Request body must be a JSON object", 400)

        entity = collection.create(payload)
        return render_entity(entity, 201)

    @app.route("/<model_name>", methods=["GET"])
    def search_entities(model_name: str):
        collection = collection_for(model_name)
        filters = {field: request.args[field] for field in SEARCH_FIELDS if request.args.get(field)}
        results = collection.search(**filters)
        logger.debug(f"Search {model_name} {filters}: {len(results)} result(s)")

        base_url = current_app.config["BASE_URL"]
        render = to_jsonld if wants_jsonld() else to_json
        return jsonify([render(entity, base_url) for entity in results]), 200

    @app.route("/<model_name>/<entity_id>", methods=["GET"])
    def retrieve_entity(model_name: str, entity_id: str):
        collection = collection_for(model_name)
        if not is_object_id(entity_id):
            return error_response("Entity ID format invalid", 400)

        entity = collection.retrieve(entity_id)
        if entity is None:
            return error_response("Entity not found", 404)
        return render_entity(entity)

    @app.route("/<model_name>/<entity_id>", methods=["PUT"])
    def update_entity(model_name: str, entity_id: str):
        collection = collection_for(model_name)
        if not is_object_id(entity_id):
            return error_response("Entity ID format invalid", 400)
        payload = json_body()
        if payload is None:
            logger.error(f"Received non-JSON payload for {model_name} {entity_id}")
            return error_response("Request body must be a JSON object", 400)

        entity = collection.update(entity_id, payload)
        if entity is None:
            return error_response("Entity not found", 404)
        return render_entity(entity)

    @app.route("/<model_name>/<entity_id>", methods=["DELETE"])
    def delete_entity(model_name: str, entity_id: str):
        collection = collection_for(model_name)
        if not is_object_id(entity_id):
            return error_response("Entity ID format invalid", 400)

        if not collection.delete(entity_id):
            return error_response("Entity not found", 404)
        return "", 204

    return app
