import pytest

from echo_admin import models
from echo_admin.episodes import EpisodeSequencer, EpisodeWriter
from echo_admin.main import app, get_sequencer


@pytest.fixture
def editor(login):
    return login("editor")


def create_story(client, headers, **fields):
    payload = {"title": "The Haunted House", "author": "R. Blake", "genre": "Horror"}
    payload.update(fields)
    r = client.post("/api/stories", json=payload, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["id"]


def add_episode(client, headers, story_id, title):
    r = client.post(
        f"/api/stories/{story_id}/episodes",
        json={"title": title, "duration": "10:00", "audioUrl": f"https://cdn.zingfm.com/{title}.mp3"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    return r.json()["episodes"]


def test_create_story_defaults(client, editor):
    story_id = create_story(client, editor)
    r = client.get(f"/api/stories/{story_id}", headers=editor)
    body = r.json()
    assert body["episodes"] == []
    assert body["cover_url"].startswith("https://picsum.photos/seed/")
    assert body["is_featured"] is False and body["is_trending"] is False


def test_list_stories_search(client, editor):
    create_story(client, editor, title="Night Shift", author="Anna K")
    create_story(client, editor, title="Sunrise", author="Mark Night")
    create_story(client, editor, title="Other", author="Someone")

    r = client.get("/api/stories", params={"q": "night"}, headers=editor)
    assert sorted(s["title"] for s in r.json()) == ["Night Shift", "Sunrise"]


def test_update_story_metadata(client, editor):
    story_id = create_story(client, editor)
    r = client.put(f"/api/stories/{story_id}", json={"title": "New Title"}, headers=editor)
    assert r.status_code == 200
    assert r.json()["title"] == "New Title"
    assert r.json()["author"] == "R. Blake"


def test_update_story_rejects_blank_and_clears_optional(client, editor):
    story_id = create_story(client, editor, description="Spooky")
    assert client.put(f"/api/stories/{story_id}", json={"title": "   "}, headers=editor).status_code == 422
    assert client.put(f"/api/stories/{story_id}", json={"author": ""}, headers=editor).status_code == 422

    r = client.put(f"/api/stories/{story_id}", json={"genre": None, "description": None}, headers=editor)
    assert r.status_code == 200
    body = r.json()
    assert body["genre"] is None
    assert body["description"] is None
    assert body["title"] == "The Haunted House"

    r = client.put(f"/api/stories/{story_id}", json={"title": None, "color": None}, headers=editor)
    assert r.json()["title"] == "The Haunted House"
    assert r.json()["color"] == "#6366f1"


def test_delete_story_requires_confirmation(client, editor):
    story_id = create_story(client, editor)
    assert client.delete(f"/api/stories/{story_id}", headers=editor).status_code == 409
    assert client.delete(f"/api/stories/{story_id}", params={"confirm": "true"}, headers=editor).status_code == 200
    assert client.get(f"/api/stories/{story_id}", headers=editor).status_code == 404


def test_episode_lifecycle(client, editor):
    story_id = create_story(client, editor)
    for title in ["A", "B", "C", "D"]:
        episodes = add_episode(client, editor, story_id, title)
    assert [(e["number"], e["title"]) for e in episodes] == [(1, "A"), (2, "B"), (3, "C"), (4, "D")]
    ids = {e["title"]: e["id"] for e in episodes}

    r = client.post(f"/api/stories/{story_id}/episodes/reorder", json={"from_index": 0, "to_index": 2}, headers=editor)
    assert [(e["number"], e["title"]) for e in r.json()["episodes"]] == [(1, "B"), (2, "C"), (3, "A"), (4, "D")]

    r = client.post(f"/api/stories/{story_id}/episodes/{ids['D']}/move", json={"direction": -1}, headers=editor)
    assert [e["title"] for e in r.json()["episodes"]] == ["B", "C", "D", "A"]

    r = client.patch(
        f"/api/stories/{story_id}/episodes/{ids['A']}",
        json={"title": "A2", "number": 999},
        headers=editor,
    )
    edited = next(e for e in r.json()["episodes"] if e["id"] == ids["A"])
    assert edited["title"] == "A2"
    assert edited["number"] == 4

    assert client.delete(f"/api/stories/{story_id}/episodes/{ids['C']}", headers=editor).status_code == 409
    r = client.delete(f"/api/stories/{story_id}/episodes/{ids['C']}", params={"confirm": "true"}, headers=editor)
    assert [(e["number"], e["title"]) for e in r.json()["episodes"]] == [(1, "B"), (2, "D"), (3, "A2")]

    stored = client.get(f"/api/stories/{story_id}", headers=editor).json()["episodes"]
    assert [(e["number"], e["title"]) for e in stored] == [(1, "B"), (2, "D"), (3, "A2")]


def test_move_at_edge_is_noop(client, editor):
    story_id = create_story(client, editor)
    episodes = add_episode(client, editor, story_id, "A")
    episodes = add_episode(client, editor, story_id, "B")

    r = client.post(f"/api/stories/{story_id}/episodes/{episodes[0]['id']}/move", json={"direction": -1}, headers=editor)
    assert r.status_code == 200
    assert [e["title"] for e in r.json()["episodes"]] == ["A", "B"]


def test_episode_validation(client, editor):
    story_id = create_story(client, editor)
    r = client.post(
        f"/api/stories/{story_id}/episodes",
        json={"title": "  ", "duration": "10:00", "audioUrl": "https://cdn/a.mp3"},
        headers=editor,
    )
    assert r.status_code == 422

    r = client.post(f"/api/stories/{story_id}/episodes/reorder", json={"from_index": 0, "to_index": 5}, headers=editor)
    assert r.status_code == 400


def test_unknown_episode_and_story(client, editor):
    story_id = create_story(client, editor)
    r = client.patch(f"/api/stories/{story_id}/episodes/nope", json={"title": "X"}, headers=editor)
    assert r.status_code == 404
    r = client.post("/api/stories/missing/episodes", json={"title": "X", "duration": "1", "audioUrl": "u"}, headers=editor)
    assert r.status_code == 404


def test_write_failure_keeps_stored_episodes(client, editor):
    story_id = create_story(client, editor)
    add_episode(client, editor, story_id, "A")
    add_episode(client, editor, story_id, "B")

    class BrokenWriter(EpisodeWriter):
        def write_episodes(self, story_id, episodes):
            raise RuntimeError("quota exceeded")

    app.dependency_overrides[get_sequencer] = lambda: EpisodeSequencer(BrokenWriter())
    try:
        r = client.post(f"/api/stories/{story_id}/episodes/reorder", json={"from_index": 0, "to_index": 1}, headers=editor)
    finally:
        del app.dependency_overrides[get_sequencer]

    assert r.status_code == 503
    assert "quota exceeded" in r.json()["detail"]
    stored = client.get(f"/api/stories/{story_id}", headers=editor).json()["episodes"]
    assert [(e["number"], e["title"]) for e in stored] == [(1, "A"), (2, "B")]


def test_legacy_episodes_get_stable_ids(client, editor, db):
    db.add(models.Story(
        id="legacy",
        title="Old",
        author="X",
        episodes=[
            {"number": 1, "title": "One", "duration": "1:00", "audioUrl": "u1"},
            {"number": 5, "title": "Two", "duration": "2:00", "audioUrl": "u2"},
        ],
    ))
    db.commit()

    first = client.get("/api/stories/legacy", headers=editor).json()["episodes"]
    second = client.get("/api/stories/legacy", headers=editor).json()["episodes"]
    assert [e["id"] for e in first] == [e["id"] for e in second]
    assert [e["number"] for e in first] == [1, 2]

    db.expire_all()
    stored = db.get(models.Story, "legacy").episodes
    assert [e["number"] for e in stored] == [1, 2]
    assert [e["id"] for e in stored] == [e["id"] for e in first]

    r = client.patch(f"/api/stories/legacy/episodes/{first[1]['id']}", json={"duration": "3:00"}, headers=editor)
    assert r.status_code == 200
    assert [(e["number"], e["duration"]) for e in r.json()["episodes"]] == [(1, "1:00"), (2, "3:00")]


def test_sections_toggle_flags(client, editor):
    a = create_story(client, editor, title="Alpha")
    b = create_story(client, editor, title="Beta")

    assert client.put(f"/api/sections/featured/{a}", headers=editor).status_code == 200
    body = client.get("/api/sections/featured", headers=editor).json()
    assert [s["id"] for s in body["active"]] == [a]
    assert [s["id"] for s in body["candidates"]] == [b]

    trending = client.get("/api/sections/trending", params={"q": "alp"}, headers=editor).json()
    assert trending["active"] == []
    assert [s["id"] for s in trending["candidates"]] == [a]

    client.delete(f"/api/sections/featured/{a}", headers=editor)
    assert client.get("/api/sections/featured", headers=editor).json()["active"] == []

    assert client.get("/api/sections/isFeatured", headers=editor).status_code == 422


def test_genres_crud(client, editor):
    r = client.post("/api/genres", json={"name": "Horror"}, headers=editor)
    genre_id = r.json()["id"]
    assert client.post("/api/genres", json={"name": "horror"}, headers=editor).status_code == 400
    client.post("/api/genres", json={"name": "Comedy"}, headers=editor)

    assert [g["name"] for g in client.get("/api/genres", headers=editor).json()] == ["Comedy", "Horror"]

    r = client.put(f"/api/genres/{genre_id}", json={"name": "Thriller"}, headers=editor)
    assert r.json()["name"] == "Thriller"

    story_id = create_story(client, editor, genre="Thriller")
    assert client.delete(f"/api/genres/{genre_id}", headers=editor).status_code == 200
    assert client.get(f"/api/stories/{story_id}", headers=editor).json()["genre"] == "Thriller"


def test_dashboard_counts(client, editor):
    s1 = create_story(client, editor, title="One")
    create_story(client, editor, title="Two")
    add_episode(client, editor, s1, "A")
    add_episode(client, editor, s1, "B")

    body = client.get("/api/dashboard", headers=editor).json()
    assert body["stories"] == 2
    assert body["episodes"] == 2
    assert len(body["recent"]) == 2
