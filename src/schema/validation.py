"""Write-time validation of entities against their resolved schema.

Entities are validated in their canonical JSON form. Dates and times are
compared as the ISO-8601 strings they serialize to, since a schema's
``format: date-time`` only constrains the serialized value.

Private bookkeeping fields (``_type``, ``_created``, ``_id``...) and JSON-LD
keywords are removed before validation; they are reserved names and are not
part of any user-authored schema.

Each schema is evaluated under the draft its $schema keyword declares.
Schemas that declare none are treated as Draft 4.

An entity that matches more than one branch of a ``oneOf`` is accepted. It
is fine for an object to match several referenced schemas at once.
"""
import json
import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

from jsonschema import Draft4Validator
from jsonschema.exceptions import ValidationError
from jsonschema.protocols import Validator
from jsonschema.validators import validator_for

from .errors import SchemaValidationError, Violation

logger = logging.getLogger(__name__)

PRIVATE_KEY_PREFIX = "_"
RESERVED_METADATA_KEYS = ("@context", "@id", "@type")


def _canonical_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    raise TypeError(f"Object of type {type(value).__name__} has no canonical JSON form")


def normalize_instance(instance: Any) -> Any:
    """Return the canonical JSON value of ``instance`` (a deep, plain copy)."""
    return json.loads(json.dumps(instance, default=_canonical_default))


def strip_private_keys(value: Any) -> Any:
    """Remove keys starting with an underscore, at every level."""
    if isinstance(value, dict):
        return {
            key: strip_private_keys(item)
            for key, item in value.items()
            if not (isinstance(key, str) and key.startswith(PRIVATE_KEY_PREFIX))
        }
    if isinstance(value, list):
        return [strip_private_keys(item) for item in value]
    return value


def strip_metadata(value: Any) -> Any:
    """Remove reserved JSON-LD keywords, at every level."""
    if isinstance(value, dict):
        return {
            key: strip_metadata(item)
            for key, item in value.items()
            if key not in RESERVED_METADATA_KEYS
        }
    if isinstance(value, list):
        return [strip_metadata(item) for item in value]
    return value


def make_validator(schema: Dict[str, Any]) -> Validator:
    """Create a validator for a resolved schema, with format checking enabled.

    The draft is taken from the schema's $schema keyword, Draft 4 when absent.
    """
    cls = validator_for(schema, default=Draft4Validator)
    return cls(schema, format_checker=cls.FORMAT_CHECKER)


def _is_tolerated(error: ValidationError) -> bool:
    # oneOf reports "valid under each of" without context; "valid under none" carries the branch errors
    return error.validator == "oneOf" and not error.context


def collect_violations(instance: Mapping[str, Any],
                       schema: Union[Dict[str, Any], Validator]) -> List[Violation]:
    """Validate ``instance`` and return every violation that is not tolerated.

    Args:
        instance: Entity data; any mapping, may hold datetimes and metadata
        schema: Resolved validation schema or a validator built by make_validator()

    Returns:
        List of violations, empty when the instance is valid
    """
    validator = make_validator(schema) if isinstance(schema, Mapping) else schema
    candidate = strip_metadata(strip_private_keys(normalize_instance(dict(instance))))

    violations = []
    for error in validator.iter_errors(candidate):
        if _is_tolerated(error):
            logger.debug(f"Ignoring oneOf multiple match: {error.message}")
            continue
        violations.append(Violation(
            path=".".join(str(part) for part in error.absolute_path),
            message=error.message,
            validator=str(error.validator),
        ))
    return violations


def validate_instance(instance: Mapping[str, Any],
                      schema: Union[Dict[str, Any], Validator],
                      model_name: Optional[str] = None) -> None:
    """Validate ``instance``, raising if any violation remains.

    Raises:
        SchemaValidationError: Carries the full list of violations
    """
    violations = collect_violations(instance, schema)
    if violations:
        logger.info(f"Validation failed for {model_name or 'entity'}: {len(violations)} violation(s)")
        raise SchemaValidationError(violations, model_name=model_name)
