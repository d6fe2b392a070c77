"""Schema Package - Schema Directory to Model Registry.

This package turns a directory tree of JSON Schema files into a registry of
models. Each model combines a validation schema, a storage schema and the
lifecycle hooks that validate entities before they are written.

Architecture:
    naming      model and collection names from a file's location
    resolver    $ref dereferencing with cycle detection and replacement
    builder     validation schema + storage schema + hooks -> Model
    validation  write-time validation of entities
    loader      parallel, memoized loading into a ModelRegistry

Usage:
    from schema import SchemaLoader

    loader = SchemaLoader("./schemas", default_collection="entities")
    registry = loader.load()
    author = registry["Author"]
    author.validate({"name": "Ada Lovelace"})

Error Handling:
    All errors derive from SchemaError:
    - SchemaDirectoryInvalid: schema root missing or not a directory
    - ReferenceResolutionError: a $ref cannot be dereferenced
    - SchemaValidationError: an entity violates its model's schema
    - DuplicateModelError: model name collision (strict mode only)
    - UnknownModelError: lookup of a model that is not in the registry
"""
from .builder import OBJECT_ID, Model, build_model
from .errors import (
    DuplicateModelError,
    ReferenceResolutionError,
    SchemaDirectoryInvalid,
    SchemaError,
    SchemaValidationError,
    UnknownModelError,
    Violation,
)
from .loader import ModelRegistry, SchemaLoader
from .naming import collection_name_for, model_name_for
from .resolver import ReferenceResolver, ResolutionResult
from .validation import collect_violations, validate_instance

__all__ = [
    "OBJECT_ID",
    "Model",
    "build_model",
    "DuplicateModelError",
    "ReferenceResolutionError",
    "SchemaDirectoryInvalid",
    "SchemaError",
    "SchemaValidationError",
    "UnknownModelError",
    "Violation",
    "ModelRegistry",
    "SchemaLoader",
    "collection_name_for",
    "model_name_for",
    "ReferenceResolver",
    "ResolutionResult",
    "collect_violations",
    "validate_instance",
]
