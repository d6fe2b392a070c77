"""Exceptions raised while loading schemas and validating entities."""
from dataclasses import dataclass
from typing import List, Optional


class SchemaError(Exception):
    """Base exception for schema loading and validation errors."""
    pass


class SchemaDirectoryInvalid(SchemaError):
    """Raised when the schema root is missing or is not a directory."""
    pass


class ReferenceResolutionError(SchemaError):
    """Raised when a $ref cannot be dereferenced.

    Attributes:
        source: Path of the schema file being resolved
        ref: The $ref value that failed (None for document-level failures)
        reason: Human-readable explanation
    """

    def __init__(self, source: str, ref: Optional[str], reason: str):
        self.source = source
        self.ref = ref
        self.reason = reason
        if ref is None:
            message = f"Cannot resolve schema {source}: {reason}"
        else:
            message = f"Cannot resolve $ref '{ref}' in {source}: {reason}"
        super().__init__(message)


class DuplicateModelError(SchemaError):
    """Raised in strict mode when two schema files derive the same model name."""
    pass


class UnknownModelError(SchemaError, KeyError):
    """Raised when a model name is not present in the registry."""

    def __str__(self) -> str:
        return f"Unknown model: {self.args[0]}" if self.args else "Unknown model"


@dataclass(frozen=True)
class Violation:
    """One schema violation found while validating an entity."""

    path: str
    message: str
    validator: str

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message, "validator": self.validator}


class SchemaValidationError(SchemaError):
    """Raised when an entity fails validation against its model schema.

    Carries every violation that was found, not just the first one.
    """

    def __init__(self, violations: List[Violation], model_name: Optional[str] = None):
        self.violations = list(violations)
        self.model_name = model_name
        summary = "; ".join(
            f"{v.message} at path: {v.path}" if v.path else v.message
            for v in self.violations
        )
        prefix = f"{model_name} failed" if model_name else "Entity failed"
        super().__init__(f"{prefix} schema validation ({len(self.violations)} error(s)): {summary}")
