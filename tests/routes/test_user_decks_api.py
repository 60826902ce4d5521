from tests.factories import create_published_deck, make_card


def _deck_payload(deck_id="local-1", **overrides):
    payload = {"id": deck_id, "title": "Voyage", "cards": [make_card(card_id="c1")], "layout": "tarot"}
    payload.update(overrides)
    return payload


def test_sync_requires_login(client):
    assert client.get("/api/user-decks").status_code == 401
    assert client.post("/api/user-decks", json=_deck_payload()).status_code == 401


def test_sync_create_then_update(client, create_user, login):
    user, password = create_user()
    login(user, password)

    created = client.post("/api/user-decks", json=_deck_payload())
    assert created.status_code == 201
    assert created.get_json()["message"] == "Deck created successfully"
    assert created.get_json()["deck"]["layout"] == "tarot"

    synced = client.post("/api/user-decks", json=_deck_payload(title="Voyage II"))
    assert synced.status_code == 200
    assert synced.get_json()["message"] == "Deck synced successfully"

    listed = client.get("/api/user-decks").get_json()["decks"]
    assert [d["title"] for d in listed] == ["Voyage II"]


def test_sync_validation_errors(client, create_user, login):
    user, password = create_user()
    login(user, password)

    resp = client.post("/api/user-decks", json={"title": "No id", "cards": []})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "validation_error", "detail": "Deck ID is required"}


def test_include_published_filter(client, create_user, login):
    user, password = create_user()
    login(user, password)
    published = create_published_deck(user)
    client.post("/api/user-decks", json=_deck_payload("a"))
    client.post("/api/user-decks", json=_deck_payload("b", published_deck_id=published.id))

    all_ids = {d["id"] for d in client.get("/api/user-decks").get_json()["decks"]}
    unpublished = [d["id"] for d in client.get("/api/user-decks?includePublished=false").get_json()["decks"]]

    assert all_ids == {"a", "b"}
    assert unpublished == ["a"]


def test_patch_and_delete_respect_ownership(client, create_user, login):
    owner, owner_pw = create_user(email="owner@example.com", username="owner")
    other, other_pw = create_user(email="other@example.com", username="other")
    login(owner, owner_pw)
    client.post("/api/user-decks", json=_deck_payload())

    patched = client.patch("/api/user-decks/local-1", json={"title": "Renamed"})
    assert patched.status_code == 200
    assert patched.get_json()["deck"]["title"] == "Renamed"

    client.post("/api/auth/logout")
    login(other, other_pw)
    assert client.patch("/api/user-decks/local-1", json={"title": "Mine now"}).status_code == 403
    assert client.delete("/api/user-decks/local-1").status_code == 403
    assert client.delete("/api/user-decks/missing").status_code == 404

    client.post("/api/auth/logout")
    login(owner, owner_pw)
    assert client.delete("/api/user-decks/local-1").status_code == 200
    assert client.get("/api/user-decks").get_json()["decks"] == []
