import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import catalog
import database
import main
from config import Settings, get_settings
from errors import NotificationError
from notifications import Mailer
from schemas import Role

PASSWORD = "Secret123"


class RecordingMailer(Mailer):
    def __init__(self, settings):
        super().__init__(settings)
        self.sent = []
        self.fail = False

    def send(self, to, subject, body):
        if self.fail:
            raise NotificationError(f"Could not send email to {to}: connection refused")
        self.sent.append({"to": to, "subject": subject, "body": body})


@pytest.fixture
def settings():
    return Settings(secret_key="test-secret", base_url="http://testserver/")


class StubTransaction:
    """Mimics pymongo's transaction context: commit on clean exit, abort on error.

    mongomock cannot roll back, so aborting restores the snapshot taken at start.
    """

    def __init__(self, session):
        self.session = session
        self.backend = session.client.backend

    def __enter__(self):
        self.snapshot = {name: list(self.backend[name].find({})) for name in self.backend.list_collection_names()}
        self.session.client.events.append("start")
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.session.client.events.append("commit")
            return False
        for name in self.backend.list_collection_names():
            self.backend[name].delete_many({})
            if self.snapshot.get(name):
                self.backend[name].insert_many(self.snapshot[name])
        self.session.client.events.append("abort")
        return False


class StubSession:
    def __init__(self, client):
        self.client = client

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.client.events.append("end")
        return False

    def start_transaction(self):
        return StubTransaction(self)


class StubClient:
    def __init__(self, backend):
        self.backend = backend
        self.events = []
        self.session_calls = []

    def start_session(self):
        return StubSession(self)


class SessionCollection:
    """Forwards to a mongomock collection, recording and dropping the session argument."""

    def __init__(self, collection, client):
        self._collection = collection
        self._client = client

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            session = kwargs.pop("session", None)
            if session is not None:
                assert session.client is self._client
                self._client.session_calls.append((self._collection.name, name))
            return attr(*args, **kwargs)

        return call


class SessionDatabase:
    def __init__(self, backend):
        self._backend = backend
        self.client = StubClient(backend)

    def __getitem__(self, name):
        return SessionCollection(self._backend[name], self.client)

    def list_collection_names(self):
        return self._backend.list_collection_names()


@pytest.fixture
def db():
    test_db = SessionDatabase(mongomock.MongoClient()["marketplace_test"])
    database.ensure_indexes(test_db)
    return test_db


@pytest.fixture
def mailer(settings):
    return RecordingMailer(settings)


@pytest.fixture
def client(db, settings, mailer):
    main.app.dependency_overrides[database.get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    main.app.dependency_overrides[main.get_mailer] = lambda: mailer
    yield TestClient(main.app, raise_server_exceptions=False)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, settings):
    counter = {"n": 0}

    def _make(role=Role.buyer, name=None, email=None, password=PASSWORD):
        counter["n"] += 1
        name = name or f"{role.value.title()} {counter['n']}"
        email = email or f"{role.value}{counter['n']}@example.com"
        user = auth.register_user(db, name, email, password, role)
        doc = db["user"].find_one({"_id": database.to_object_id(user["id"])})
        token = auth.create_access_token(settings, doc)
        user["token"] = token
        user["headers"] = {"Authorization": f"Bearer {token}"}
        return user

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(Role.buyer)


@pytest.fixture
def admin(make_user):
    return make_user(Role.admin)


@pytest.fixture
def category(db):
    return catalog.create_category(db, "Electronics", "Gadgets and devices")


@pytest.fixture
def make_product(db, category):
    def _make(name, price=10.0, stock=5, category_id=None):
        return catalog.create_product(
            db,
            product_name=name,
            price=price,
            stock_quantity=stock,
            category_id=category_id or category["id"],
        )

    return _make
