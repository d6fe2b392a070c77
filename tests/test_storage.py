"""
Unit Tests for the SQLite entity store.
"""
import sqlite3
from unittest.mock import patch

import pytest

from schema import SchemaLoader, SchemaValidationError
from storage import EntityStore, is_object_id, new_object_id
from storage.store import table_name_for


@pytest.fixture
def quotations(store, registry):
    return store.bind(registry["Quotation"])


@pytest.fixture
def authors(store, registry):
    return store.bind(registry["Author"])


def test_new_object_id_format():
    """Test generated ids are unique ObjectIDs."""
    ids = {new_object_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(is_object_id(entity_id) for entity_id in ids)


@pytest.mark.parametrize("value,expected", [
    ("65a1c0de8f1b2c3d4e5f6a7b", True),
    ("65A1C0DE8F1B2C3D4E5F6A7B", True),
    ("65a1c0de", False),
    ("../../../etc/passwd", False),
    (None, False),
])
def test_is_object_id(value, expected):
    """Test ObjectID detection."""
    assert is_object_id(value) is expected


def test_table_name_is_sanitized():
    """Test collection table names are sanitized."""
    assert table_name_for("creativeWorks") == "collection_creativeWorks"
    assert table_name_for('x"; DROP TABLE y; --') == "collection_x___DROP_TABLE_y____"


def test_store_creates_database_directory(tmp_path):
    """Test the database directory is created."""
    db_path = tmp_path / "nested" / "dir" / "entities.db"

    EntityStore(str(db_path))

    assert db_path.exists()


def test_create_and_retrieve(quotations):
    """Test creating and retrieving an entity."""
    created = quotations.create({"text": "To be, or not to be", "spokenByCharacter": {"name": "Hamlet"}})

    assert is_object_id(created["_id"])
    assert created["_type"] == "Quotation"
    assert created["_created"] == created["_updated"]

    assert quotations.retrieve(created["_id"]) == created


def test_create_ignores_client_id_and_jsonld_keys(quotations):
    """Test client ids and JSON-LD keys are ignored on create."""
    created = quotations.create({
        "text": "Hello",
        "_id": "65a1c0de8f1b2c3d4e5f6a7b",
        "@id": "http://localhost:5000/Quotation/65a1c0de8f1b2c3d4e5f6a7b",
        "@context": "http://schema.org",
    })

    assert created["_id"] != "65a1c0de8f1b2c3d4e5f6a7b"
    assert "@id" not in created
    assert "@context" not in created


def test_invalid_create_stores_nothing(quotations):
    """Test an invalid create stores nothing."""
    with pytest.raises(SchemaValidationError):
        quotations.create({"name": "No text"})

    assert quotations.search() == []


def test_retrieve_missing_and_malformed(quotations):
    """Test retrieving missing and malformed ids."""
    assert quotations.retrieve(new_object_id()) is None
    assert quotations.retrieve("not-an-id") is None


def test_retrieve_is_scoped_to_model_type(store, registry, quotations):
    """Test retrieval is scoped to the model type."""
    things = store.bind(registry["Thing"])
    quote = quotations.create({"text": "Hello"})

    # Thing and Quotation share the "entities" collection
    assert things.retrieve(quote["_id"]) is None


def test_update_keeps_immutable_metadata(quotations):
    """Test update keeps _id, _type and _created."""
    created = quotations.create({"text": "Hello", "name": "Greeting"})

    updated = quotations.update(created["_id"], {
        "text": "Taste the rainbow",
        "_type": "Thing",
        "_created": "1999-01-01T00:00:00+00:00",
        "@id": "ignored",
    })

    assert updated["_id"] == created["_id"]
    assert updated["_type"] == "Quotation"
    assert updated["_created"] == created["_created"]
    assert "name" not in updated
    assert "@id" not in updated
    assert quotations.retrieve(created["_id"]) == updated


def test_invalid_update_leaves_entity_unchanged(quotations):
    """Test an invalid update leaves the entity unchanged."""
    created = quotations.create({"text": "Hello"})

    with pytest.raises(SchemaValidationError):
        quotations.update(created["_id"], {"name": "No text"})

    assert quotations.retrieve(created["_id"]) == created


def test_update_missing_entity(quotations):
    """Test updating a missing entity."""
    assert quotations.update(new_object_id(), {"text": "Hello"}) is None


def test_delete(quotations):
    """Test deleting an entity."""
    created = quotations.create({"text": "Hello"})

    assert quotations.delete(created["_id"]) is True
    assert quotations.retrieve(created["_id"]) is None
    assert quotations.delete(created["_id"]) is False


def test_delete_runs_pre_delete_hooks(schema_dir, store):
    """Test pre_delete hooks passed to the loader run on delete."""
    deleted = []
    hooks = {"Thing": {"pre_delete": [lambda m, entity: deleted.append(entity["_id"])]}}
    registry = SchemaLoader(schema_dir, hooks=hooks).load()
    things = store.bind(registry["Thing"])
    created = things.create({"name": "Lamp"})

    things.delete(created["_id"])

    assert deleted == [created["_id"]]


def test_search_by_fields(authors):
    """Test searching by name and sameAs."""
    ada = authors.create({"name": "Ada Lovelace", "sameAs": "https://en.wikipedia.org/wiki/Ada_Lovelace"})
    authors.create({"name": "Charles Babbage"})

    assert authors.search(name="Ada Lovelace") == [ada]
    assert authors.search(sameAs="https://en.wikipedia.org/wiki/Ada_Lovelace") == [ada]
    assert authors.search(name="Nobody") == []
    assert len(authors.search()) == 2


def test_search_rejects_unsafe_field_names(authors):
    """Test unsafe search field names are rejected."""
    with pytest.raises(ValueError):
        authors.search(**{"name') OR 1=1 --": "x"})


def test_search_is_scoped_to_model_type(store, registry, quotations):
    """Test search is scoped to the model type."""
    things = store.bind(registry["Thing"])
    things.create({"name": "Shared"})
    quotations.create({"name": "Shared", "text": "Hello"})

    assert [e["_type"] for e in things.search(name="Shared")] == ["Thing"]
    assert [e["_type"] for e in quotations.search(name="Shared")] == ["Quotation"]


def test_reference_index(authors, store):
    """Test the reference index follows updates."""
    ada = authors.create({"name": "Ada Lovelace"})
    charles = authors.create({"name": "Charles Babbage", "bestFriend": ada["_id"]})

    assert store.find_references(ada["_id"]) == [
        {"collection": "people", "entity_id": charles["_id"], "field": "bestFriend"}
    ]

    authors.update(charles["_id"], {"name": "Charles Babbage"})
    assert store.find_references(ada["_id"]) == []


def test_reference_index_cleared_on_delete(authors, store):
    """Test the reference index is cleared on delete."""
    ada = authors.create({"name": "Ada Lovelace"})
    charles = authors.create({"name": "Charles Babbage", "bestFriend": ada["_id"]})

    authors.delete(charles["_id"])

    assert store.find_references(ada["_id"]) == []


def test_ensure_collection_is_idempotent(store, registry):
    """Test ensure_collection is idempotent."""
    model = registry["Author"]

    assert store.ensure_collection(model) == "collection_people"
    assert store.ensure_collection(model) == "collection_people"


def test_database_errors_are_raised(quotations):
    """Test database errors propagate."""
    with patch.object(quotations.store, "_connect", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(sqlite3.OperationalError):
            quotations.create({"text": "Hello"})
