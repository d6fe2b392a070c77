"""Public representations of stored entities.

Stored entities carry private bookkeeping fields (``_id``, ``_type``,
``_created``, ``_updated``). Clients see them as linked data instead:

    {
      "@id": "http://localhost:5000/Quotation/65a1c0de8f1b2c3d4e5f6a7b",
      "@type": "Quotation",
      "text": "...",
      "spokenByCharacter": {"name": "Hamlet"}
    }

to_jsonld() adds an ``@context`` so the document is valid JSON-LD.
"""
from typing import Any, Dict, Mapping

from schema.builder import TYPE_FIELD
from schema.validation import strip_private_keys

from .store import ID_FIELD

JSONLD_CONTEXT = "http://schema.org"


def entity_url(base_url: str, model_name: str, entity_id: str) -> str:
    return f"{base_url.rstrip('/')}/{model_name}/{entity_id}"


def to_json(entity: Mapping[str, Any], base_url: str) -> Dict[str, Any]:
    """Return the public JSON form of a stored entity."""
    model_name = entity.get(TYPE_FIELD)
    document: Dict[str, Any] = {
        "@id": entity_url(base_url, model_name, entity.get(ID_FIELD)),
        "@type": model_name,
    }
    document.update(strip_private_keys(dict(entity)))
    return document


def to_jsonld(entity: Mapping[str, Any], base_url: str) -> Dict[str, Any]:
    """Return the JSON-LD form of a stored entity."""
    document = {"@context": JSONLD_CONTEXT}
    document.update(to_json(entity, base_url))
    return document
