"""
Model Builder - Validation and Storage Schemas From One Resolved Schema.

A Model pairs two variants of the same resolved schema:

    schema          Used to validate entities. Every
                    {"type": "string", "format": "objectid"} node also gets
                    the 24 hex character pattern, so identifiers are checked
                    for shape as well as type.
    storage_schema  Used to generate the storage layout. Every objectid node
                    is replaced by the shared OBJECT_ID placeholder so the
                    storage layer knows to keep a native reference for it
                    instead of a plain string.

Both variants get three metadata properties that the source schema does
not declare: _type (the model name, for polymorphic lookup), _created and
_updated (ISO-8601 timestamps).

Lifecycle Hooks:
    pre_create  set _type, keep _created if present (else now), set _updated
                to now, then validate. A validation failure aborts the create.
    pre_update  refresh _updated, then validate the update payload.
    pre_delete  no built-in behaviour.

    Extra hooks can be appended with Model.add_hook(); they run after the
    built-in ones and receive (model, data). Once a model is placed in a
    ModelRegistry its hooks are frozen and add_hook() raises RuntimeError.
"""
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from jsonschema.protocols import Validator

from .resolver import OBJECTID_PATTERN, ResolutionResult
from .validation import make_validator, validate_instance

logger = logging.getLogger(__name__)

HOOK_EVENTS = ("pre_create", "pre_update", "pre_delete")

TYPE_FIELD = "_type"
CREATED_FIELD = "_created"
UPDATED_FIELD = "_updated"

METADATA_PROPERTIES = {
    TYPE_FIELD: {"type": "string"},
    CREATED_FIELD: {"type": "string", "format": "date-time"},
    UPDATED_FIELD: {"type": "string", "format": "date-time"},
}

Hook = Callable[["Model", Dict[str, Any]], None]


class ObjectIdType:
    """Shared placeholder marking a native reference field in a storage schema.

    There is only ever one instance, OBJECT_ID, and copying returns it
    unchanged so identity checks keep working on copied schemas.
    """

    _instance: Optional["ObjectIdType"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __repr__(self) -> str:
        return "OBJECT_ID"

    def to_dict(self) -> Dict[str, str]:
        return {"$ref": "#/definitions/objectid"}


OBJECT_ID = ObjectIdType()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_objectid_node(node: Any) -> bool:
    return isinstance(node, dict) and node.get("type") == "string" and node.get("format") == "objectid"


def _annotate_objectids(node: Any) -> None:
    if isinstance(node, dict):
        if is_objectid_node(node):
            node["pattern"] = OBJECTID_PATTERN
        for value in node.values():
            _annotate_objectids(value)
    elif isinstance(node, list):
        for item in node:
            _annotate_objectids(item)


def _storage_variant(node: Any) -> Any:
    if isinstance(node, dict):
        if is_objectid_node(node):
            return OBJECT_ID
        return {key: _storage_variant(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_storage_variant(item) for item in node]
    return node


def _add_metadata(schema: Any) -> None:
    if not isinstance(schema, dict):
        return
    properties = schema.setdefault("properties", {})
    for name, definition in METADATA_PROPERTIES.items():
        properties[name] = copy.deepcopy(definition)


def storage_schema_to_json(node: Any) -> Any:
    """Render a storage schema as plain JSON (OBJECT_ID becomes a $ref)."""
    if node is OBJECT_ID:
        return OBJECT_ID.to_dict()
    if isinstance(node, dict):
        return {key: storage_schema_to_json(value) for key, value in node.items()}
    if isinstance(node, list):
        return [storage_schema_to_json(item) for item in node]
    return node


# Built-in hooks

def _stamp_create(model: "Model", entity: Dict[str, Any]) -> None:
    now = utc_now()
    entity[TYPE_FIELD] = model.name
    if not entity.get(CREATED_FIELD):
        entity[CREATED_FIELD] = now
    entity[UPDATED_FIELD] = now


def _stamp_update(model: "Model", changes: Dict[str, Any]) -> None:
    changes[UPDATED_FIELD] = utc_now()


def _validate(model: "Model", data: Dict[str, Any]) -> None:
    model.validate(data)


@dataclass(frozen=True)
class Model:
    """A model generated from one schema file."""

    name: str
    collection_name: str
    schema: Dict[str, Any]
    storage_schema: Dict[str, Any]
    replaced_references: Mapping[str, str]
    source_path: Optional[str] = None
    validator: Optional[Validator] = field(default=None, repr=False, compare=False)
    hooks: Mapping[str, Sequence[Hook]] = field(default_factory=dict, repr=False, compare=False)

    def validate(self, data: Mapping[str, Any]) -> None:
        """Validate entity data against this model's validation schema.

        Raises:
            SchemaValidationError: With every violation found
        """
        validate_instance(data, self.validator or self.schema, model_name=self.name)

    def add_hook(self, event: str, hook: Hook) -> None:
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown hook event '{event}', expected one of {HOOK_EVENTS}")
        if self.hooks_frozen:
            raise RuntimeError(f"Hooks of model {self.name} are frozen")
        self.hooks.setdefault(event, []).append(hook)

    @property
    def hooks_frozen(self) -> bool:
        return isinstance(self.hooks, MappingProxyType)

    def freeze_hooks(self) -> None:
        """Make the hook lists read-only. Called when the model enters a registry."""
        if not self.hooks_frozen:
            frozen = {event: tuple(hooks) for event, hooks in self.hooks.items()}
            object.__setattr__(self, "hooks", MappingProxyType(frozen))

    def run_hooks(self, event: str, data: Dict[str, Any]) -> None:
        """Run the hooks for ``event``; exceptions propagate and abort the write."""
        for hook in self.hooks.get(event, []):
            hook(self, data)

    def reference_fields(self) -> List[str]:
        """Dotted property paths whose storage type is OBJECT_ID."""
        fields: List[str] = []
        _collect_reference_fields(self.storage_schema, (), fields)
        return fields

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "collection": self.collection_name,
            "source": self.source_path,
            "replaced_references": dict(self.replaced_references),
            "reference_fields": self.reference_fields(),
        }


def _collect_reference_fields(node: Any, path: tuple, fields: List[str]) -> None:
    if not isinstance(node, dict):
        return
    for name, definition in (node.get("properties") or {}).items():
        if definition is OBJECT_ID:
            fields.append(".".join(path + (name,)))
        elif isinstance(definition, dict):
            if definition.get("type") == "array" and definition.get("items") is OBJECT_ID:
                fields.append(".".join(path + (name,)))
            else:
                _collect_reference_fields(definition, path + (name,), fields)


def build_model(resolution: ResolutionResult, name: str, collection_name: str,
                source_path: Optional[str] = None) -> Model:
    """Build a Model from a resolved schema without re-resolving references.

    Args:
        resolution: Output of ReferenceResolver.resolve()
        name: Model name
        collection_name: Collection the model's entities are stored in
        source_path: Schema file the model came from (informational)

    Returns:
        Model with validation schema, storage schema and built-in hooks
    """
    schema = copy.deepcopy(resolution.schema)
    _annotate_objectids(schema)
    _add_metadata(schema)

    storage_schema = _storage_variant(schema)

    model = Model(
        name=name,
        collection_name=collection_name,
        schema=schema,
        storage_schema=storage_schema,
        replaced_references=MappingProxyType(dict(resolution.replaced_references)),
        source_path=source_path,
        validator=make_validator(schema),
    )
    model.add_hook("pre_create", _stamp_create)
    model.add_hook("pre_create", _validate)
    model.add_hook("pre_update", _stamp_update)
    model.add_hook("pre_update", _validate)

    logger.debug(f"Built model {name} (collection: {collection_name})")
    return model
