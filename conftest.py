import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from library import Library
from security import BcryptHasher


@pytest.fixture
def db():
    # Fresh in-memory database per test
    client = mongomock.MongoClient()
    db = client["libra_test"]
    # same unique and sparse indexes as production
    database.ensure_indexes(db)
    yield db
    client.close()


@pytest.fixture
def lib(db):
    # Lowest bcrypt cost keeps the suite fast
    return Library(db, hasher=BcryptHasher(rounds=4))


@pytest.fixture
def client(lib):
    import api as api_module

    api_module.app.dependency_overrides[api_module.get_library] = lambda: lib
    try:
        # No context manager: the lifespan (real MongoDB) is not started
        yield TestClient(api_module.app)
    finally:
        api_module.app.dependency_overrides.clear()
