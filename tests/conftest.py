import pytest

from app import create_app
from config import Config
from services.bucket import ImageBucket
from services.catalog import AchievementCatalog
from services.db import PostgresAdapter
from services.json_store import JSONAdapter

SECRET = "test-secret-key-0123456789-abcdefghijklmnop"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture
def config(tmp_path):
    return Config.for_data_dir(str(tmp_path), SECRET_KEY=SECRET, ADMIN_EMAILS=[ADMIN_EMAIL])


@pytest.fixture
def app(config):
    app = create_app(config)
    app.config.update(TESTING=True)
    yield app
    app.config["SYNC_REGISTRY"].close_all()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, email, username="steve", password="diamonds"):
    r = client.post("/api/auth/register", json={"username": username, "email": email, "password": password})
    assert r.status_code == 201, r.get_json()
    return r.get_json()


@pytest.fixture
def admin_client(app):
    c = app.test_client()
    register(c, ADMIN_EMAIL, username="alex")
    return c


@pytest.fixture
def user_client(app):
    c = app.test_client()
    register(c, "steve@example.com")
    return c


@pytest.fixture
def json_store(tmp_path):
    return JSONAdapter(str(tmp_path / "data.json"))


@pytest.fixture
def sql_store(tmp_path):
    store = PostgresAdapter(f"sqlite:///{tmp_path / 'conquistas.db'}")
    store.ensure_schema()
    return store


@pytest.fixture(params=["json", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def bucket(tmp_path):
    return ImageBucket(str(tmp_path / "uploads"))


@pytest.fixture
def catalog(store, bucket):
    return AchievementCatalog(store, bucket, max_image_bytes=1024)
