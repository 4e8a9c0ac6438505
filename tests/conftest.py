import sys
from pathlib import Path

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SMALL_CATALOG = {
    "version": 2,
    "lessons": [
        {
            "title": "Ethical Labor & Human Rights",
            "subtitle": "Wages, working conditions and forced labor",
            "category": "Responsible Sourcing",
            "difficulty": "beginner",
            "content": [
                {"type": "heading", "text": "What Are Ethical Labor Practices?"},
                {"type": "list", "items": ["Fair wages", "Safe working conditions"]},
            ],
            "quiz": [
                {
                    "question": "Which is a core principle?",
                    "options": ["Maximizing profits", "Fair wages"],
                    "correctAnswer": 1,
                },
                {"question": "Essay: why does ethical labor pay off?", "isEssay": True},
            ],
        },
        {
            "title": "Interactive Activity: Supply Chain Mapping Exercise",
            "subtitle": "Map multi-tier supply chains",
            "category": "Responsible Sourcing",
            "content": [{"type": "interactive-activity", "component": "SupplyChainMappingActivity"}],
            "quiz": [],
        },
        {
            "title": "Optimization, Predictive Analytics, and Live Monitoring",
            "subtitle": "Real-time insights for sustainable supply chains",
            "category": "Emerging Technology & AI Integration",
            "difficulty": "advanced",
            "content": [{"type": "paragraph", "text": "Predictive models flag risks early."}],
            "quiz": [],
        },
    ],
}


@pytest.fixture
def store(monkeypatch, tmp_path):
    import kv_store

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(kv_store, "DB_PATH", str(db_path))
    monkeypatch.setattr(kv_store, "_store", None)
    kv = kv_store.get_store()
    yield kv
    kv.close()


@pytest.fixture
def identity(store):
    from identity import IdentityProvider

    return IdentityProvider(store)


@pytest.fixture
def lessons(store, identity):
    from lessons import LessonStore

    return LessonStore(store, identity)


@pytest.fixture
def small_catalog_path(tmp_path) -> Path:
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(SMALL_CATALOG, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture
def small_catalog(small_catalog_path):
    from curriculum import load_catalog

    return load_catalog(small_catalog_path)


@pytest.fixture
def client(store, monkeypatch, small_catalog_path):
    from fastapi.testclient import TestClient

    monkeypatch.setenv("CURRICULUM_PATH", str(small_catalog_path))
    import app

    return TestClient(app.app)


@pytest.fixture
def api_path():
    import app

    def _path(path: str) -> str:
        return f"{app.API_PREFIX}{path}"

    return _path


@pytest.fixture
def make_user(client, api_path):
    """Sign up and log in a user, returning ``(user_id, auth headers)``."""

    def _make(email: str, *, role: str = "student", name: str = "Test User", password: str = "s3cret-pass"):
        resp = client.post(
            api_path("/signup"),
            json={"email": email, "password": password, "name": name, "role": role},
        )
        assert resp.status_code == 200, resp.text
        resp = client.post(api_path("/login"), json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        session = resp.json()
        return session["user"]["id"], {"Authorization": f"Bearer {session['accessToken']}"}

    return _make
