"""Storage Package - Entity Persistence for Generated Models.

EntityStore keeps entities in SQLite, one table per collection, plus an
index of the references between entities. EntityStore.bind(model) returns
the model's ModelCollection, which runs the model's lifecycle hooks
(stamping and validation) before every write.

Usage:
    from storage import EntityStore

    store = EntityStore("./data/entities.db")
    quotations = store.bind(registry["Quotation"])
    quote = quotations.create({"text": "To be, or not to be"})
    quotations.retrieve(quote["_id"])
"""
from .serialize import to_json, to_jsonld
from .store import EntityStore, ModelCollection, is_object_id, new_object_id

__all__ = [
    "EntityStore",
    "ModelCollection",
    "is_object_id",
    "new_object_id",
    "to_json",
    "to_jsonld",
]
