"""
Integration Tests for the entity API.

Exercises the Flask application end to end with the test client: a real
schema directory, a temporary SQLite database and the same routes the
server exposes.
"""
import sqlite3
from unittest.mock import patch

from api import create_app


QUOTE = {
    "name": "A well known quote",
    "text": "You must be the change you wish to see in the world.",
    "spokenByCharacter": {"name": "Mahatma Gandhi", "birthDate": "2000-01-01"},
}


def relative_path(document):
    return document["@id"].replace("http://localhost:3000", "")


def test_health_check(client):
    """Test the health endpoint reports the model count."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "healthy", "models": 4}


def test_list_models(client):
    """Test listing models with collections and replaced references."""
    response = client.get("/models")

    models = {m["name"]: m for m in response.get_json()["models"]}
    assert sorted(models) == ["Article", "Author", "Quotation", "Thing"]
    assert models["Author"]["collection"] == "people"
    assert "properties.spokenByCharacter.properties.knows" in models["Quotation"]["replaced_references"]


def test_create_quotation(client):
    """Test creating an entity returns its JSON document."""
    response = client.post("/Quotation", json=QUOTE)

    assert response.status_code == 201
    quote = response.get_json()
    assert quote["@id"].startswith("http://localhost:3000/Quotation/")
    assert quote["@type"] == "Quotation"
    assert quote["name"] == "A well known quote"
    assert quote["text"] == QUOTE["text"]
    assert "_id" not in quote


def test_retrieve_quotation(client):
    """Test retrieving a created entity by its @id path."""
    quote = client.post("/Quotation", json=QUOTE).get_json()

    response = client.get(relative_path(quote))

    assert response.status_code == 200
    assert response.get_json() == quote


def test_retrieve_as_jsonld(client):
    """Test content negotiation for JSON-LD."""
    quote = client.post("/Quotation", json=QUOTE).get_json()

    response = client.get(relative_path(quote), headers={"Accept": "application/ld+json"})

    assert response.status_code == 200
    assert response.mimetype == "application/ld+json"
    assert response.get_json(force=True)["@context"] == "http://schema.org"


def test_update_quotation(client):
    """Test replacing an entity with PUT."""
    quote = client.post("/Quotation", json=QUOTE).get_json()
    quote["text"] = "Taste the rainbow"
    quote["spokenByCharacter"] = {"name": "Skittles (Wrigley Company)", "leiCode": "549300MGWYJ9LR7XYV24"}

    response = client.put(relative_path(quote), json=quote)
    assert response.status_code == 200

    fetched = client.get(relative_path(quote)).get_json()
    assert fetched["text"] == "Taste the rainbow"
    assert fetched["spokenByCharacter"]["leiCode"] == "549300MGWYJ9LR7XYV24"
    assert fetched["@id"] == quote["@id"]


def test_delete_quotation(client):
    """Test deleting an entity and deleting it again."""
    quote = client.post("/Quotation", json=QUOTE).get_json()

    assert client.delete(relative_path(quote)).status_code == 204
    assert client.get(relative_path(quote)).status_code == 404
    assert client.delete(relative_path(quote)).status_code == 404


def test_search(client):
    """Test searching a collection by name and sameAs."""
    client.post("/Author", json={"name": "Ada Lovelace", "sameAs": "https://en.wikipedia.org/wiki/Ada_Lovelace"})
    client.post("/Author", json={"name": "Charles Babbage"})

    response = client.get("/Author?name=Ada%20Lovelace")
    assert response.status_code == 200
    assert [a["name"] for a in response.get_json()] == ["Ada Lovelace"]

    response = client.get("/Author", query_string={"sameAs": "https://en.wikipedia.org/wiki/Ada_Lovelace"})
    assert [a["name"] for a in response.get_json()] == ["Ada Lovelace"]

    assert len(client.get("/Author").get_json()) == 2


def test_validation_error_returns_details(client):
    """Test a validation failure returns 400 with violation details."""
    response = client.post("/Quotation", json={"name": "Missing text"})

    assert response.status_code == 400
    body = response.get_json()
    assert body["status"] == "error"
    assert len(body["details"]) == 1
    assert body["details"][0]["validator"] == "required"


def test_invalid_update_returns_400(client):
    """Test an invalid update is rejected and leaves the entity unchanged."""
    quote = client.post("/Quotation", json=QUOTE).get_json()

    response = client.put(relative_path(quote), json={"name": "Missing text"})

    assert response.status_code == 400
    assert client.get(relative_path(quote)).get_json()["text"] == QUOTE["text"]


def test_non_json_body_is_rejected(client):
    """Test form-encoded bodies are rejected."""
    response = client.post("/Quotation", data="text=hello", content_type="application/x-www-form-urlencoded")

    assert response.status_code == 400
    assert "JSON" in response.get_json()["message"]


def test_json_array_body_is_rejected(client):
    """Test a JSON array body is rejected."""
    assert client.post("/Quotation", json=[QUOTE]).status_code == 400


def test_unknown_model_returns_404(client):
    """Test requests for an unknown model return 404."""
    assert client.post("/Unicorn", json={}).status_code == 404
    assert client.get("/Unicorn").status_code == 404

    response = client.get("/Unicorn/65a1c0de8f1b2c3d4e5f6a7b")
    assert response.status_code == 404
    assert response.get_json()["message"] == "Unknown model: Unicorn"


def test_malformed_id_returns_400(client):
    """Test malformed entity ids return 400."""
    assert client.get("/Quotation/not-an-id").status_code == 400
    assert client.put("/Quotation/not-an-id", json=QUOTE).status_code == 400
    assert client.delete("/Quotation/not-an-id").status_code == 400


def test_missing_entity_returns_404(client):
    """Test missing entities return 404."""
    assert client.get("/Quotation/65a1c0de8f1b2c3d4e5f6a7b").status_code == 404
    assert client.put("/Quotation/65a1c0de8f1b2c3d4e5f6a7b", json=QUOTE).status_code == 404


def test_entity_of_other_model_is_not_found(client):
    """Test an entity is not reachable through another model."""
    thing = client.post("/Thing", json={"name": "Lamp"}).get_json()
    entity_id = thing["@id"].rsplit("/", 1)[1]

    assert client.get(f"/Quotation/{entity_id}").status_code == 404


def test_storage_error_returns_sanitized_500(client, store):
    """Test storage errors return 500 without internal details."""
    with patch.object(store, "_connect", side_effect=sqlite3.OperationalError("unable to open /secret/path.db")):
        response = client.post("/Quotation", json=QUOTE)

    assert response.status_code == 500
    body = response.get_json()
    assert body["message"] == "Storage unavailable"
    assert "/secret" not in response.get_data(as_text=True)


def test_cors_enabled(registry, store, app_config):
    """Test CORS headers for a configured origin."""
    app_config["cors"] = {"enabled": True, "origins": ["https://blog.example.com"]}
    app = create_app(registry, store, config=app_config)

    response = app.test_client().get("/health", headers={"Origin": "https://blog.example.com"})

    assert response.headers.get("Access-Control-Allow-Origin") == "https://blog.example.com"


def test_cors_disabled_by_default(client):
    """Test CORS headers are absent by default."""
    response = client.get("/health", headers={"Origin": "https://blog.example.com"})

    assert "Access-Control-Allow-Origin" not in response.headers
