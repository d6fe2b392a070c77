"""
Pytest configuration and shared fixtures for all tests.

This module provides shared fixtures for the test suite, including:
- A schema directory tree written to a temporary path
- Loaded model registries
- Entity stores backed by a temporary SQLite database
- A Flask test client for the entity API
"""
import json
from pathlib import Path

import pytest


THING_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "description": {"type": "string"},
        "sameAs": {"type": "string", "format": "uri"},
    },
}

QUOTATION_SCHEMA = {
    "type": "object",
    "required": ["text"],
    "properties": {
        "name": {"type": "string"},
        "text": {"type": "string"},
        "spokenByCharacter": {"$ref": "#/definitions/Character"},
    },
    "definitions": {
        "Character": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "birthDate": {"type": "string", "format": "date"},
                "leiCode": {"type": "string"},
                "knows": {"$ref": "#/definitions/Character"},
            },
        }
    },
}

AUTHOR_SCHEMA = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string"},
        "birthDate": {"type": "string", "format": "date"},
        "sameAs": {"type": "string", "format": "uri"},
        "bestFriend": {"type": "string", "format": "objectid"},
    },
}

ARTICLE_SCHEMA = {
    "type": "object",
    "required": ["headline"],
    "properties": {
        "headline": {"type": "string"},
        "author": {"$ref": "../Person/Author.json"},
        "about": {"$ref": "../Thing.json"},
    },
}


def write_schema(root: Path, relative_path: str, schema) -> Path:
    """Write ``schema`` as JSON at ``root/relative_path``, creating directories."""
    path = Path(root) / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(schema, indent=2))
    return path


@pytest.fixture
def schema_dir(tmp_path):
    """A schema tree with root-level, grouped, cross-file and circular schemas."""
    root = tmp_path / "schemas"
    root.mkdir()
    write_schema(root, "Thing.json", THING_SCHEMA)
    write_schema(root, "Quotation.json", QUOTATION_SCHEMA)
    write_schema(root, "Person/Author.json", AUTHOR_SCHEMA)
    write_schema(root, "CreativeWork/Article.json", ARTICLE_SCHEMA)
    return root


@pytest.fixture
def registry(schema_dir):
    """Model registry loaded from schema_dir."""
    from schema import SchemaLoader

    return SchemaLoader(schema_dir, default_collection="entities").load()


@pytest.fixture
def store(tmp_path):
    """Entity store backed by a temporary SQLite database."""
    from storage import EntityStore

    return EntityStore(str(tmp_path / "data" / "entities.db"))


@pytest.fixture
def app_config():
    """Configuration used by the Flask app in tests."""
    from config import get_default_config

    config = get_default_config()
    config["server"]["base_url"] = "http://localhost:3000"
    return config


@pytest.fixture
def client(registry, store, app_config):
    """Flask test client for the entity API."""
    from api import create_app

    app = create_app(registry, store, config=app_config)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
