"""
In-memory stand-ins for the Firestore client and the storage bucket.
"""
import copy
import io
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from firebase_admin import firestore as admin_firestore
from google.api_core import exceptions as google_exceptions
from PIL import Image

from asset_store import AssetStore
from project_store import ProjectStore


def _resolve(value, stamp):
    if value is admin_firestore.SERVER_TIMESTAMP:
        return stamp
    if isinstance(value, dict):
        return {key: _resolve(item, stamp) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve(item, stamp) for item in value]
    return value


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, db, path):
        self.db = db
        self.path = path
        self.id = path.split('/')[-1]

    def collection(self, name):
        return FakeCollection(self.db, f"{self.path}/{name}")

    def get(self):
        self.db.check('get')
        return FakeSnapshot(self, copy.deepcopy(self.db.docs.get(self.path)))

    def set(self, data):
        self.db.check('set')
        self.db.writes.append(('set', self.path))
        self.db.docs[self.path] = _resolve(copy.deepcopy(data), self.db.now())

    def update(self, data):
        self.db.check('update')
        if self.path not in self.db.docs:
            raise google_exceptions.NotFound(f"No document to update: {self.path}")
        self.db.writes.append(('update', self.path))
        self.db.docs[self.path].update(_resolve(copy.deepcopy(data), self.db.now()))


class FakeQuery:
    def __init__(self, collection, filters=None, order=None):
        self.collection = collection
        self.filters = filters or []
        self.order = order

    def where(self, field, op, value):
        assert op == '=='
        return FakeQuery(self.collection, self.filters + [(field, value)], self.order)

    def order_by(self, field, direction='ASCENDING'):
        return FakeQuery(self.collection, self.filters, (field, direction))

    def stream(self):
        snapshots = [
            snapshot for snapshot in self.collection.stream()
            if all(snapshot.to_dict().get(field) == value for field, value in self.filters)
        ]
        if self.order:
            field, direction = self.order
            # Documents without the field sort first, like missing values in Firestore
            snapshots.sort(
                key=lambda snapshot: (snapshot.to_dict().get(field) is not None, snapshot.to_dict().get(field) or 0),
                reverse=direction == admin_firestore.Query.DESCENDING,
            )
        return iter(snapshots)


class FakeCollection(FakeQuery):
    def __init__(self, db, path):
        super().__init__(self)
        self.db = db
        self.path = path

    def document(self, document_id=None):
        return FakeDocument(self.db, f"{self.path}/{document_id or uuid.uuid4().hex[:20]}")

    def stream(self):
        self.db.check('stream')
        depth = self.path.count('/') + 1
        return iter([
            FakeSnapshot(FakeDocument(self.db, path), copy.deepcopy(data))
            for path, data in sorted(self.db.docs.items())
            if path.startswith(self.path + '/') and path.count('/') == depth
        ])


class FakeCollectionGroup:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    def stream(self):
        self.db.check('stream')
        return iter([
            FakeSnapshot(FakeDocument(self.db, path), copy.deepcopy(data))
            for path, data in sorted(self.db.docs.items())
            if path.split('/')[-2] == self.name
        ])


class FakeBatch:
    def __init__(self, db):
        self.db = db
        self.operations = []

    def update(self, reference, data):
        self.operations.append((reference, data))

    def commit(self):
        self.db.commits += 1
        for reference, data in self.operations:
            reference.update(data)


class FakeFirestore:
    """Flat path -> document dict store with just enough of the client API."""

    def __init__(self):
        self.docs = {}
        self.writes = []
        self.commits = 0
        self.failing = set()
        self._tick = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self):
        self._tick += timedelta(seconds=1)
        return self._tick

    def check(self, operation):
        if operation in self.failing:
            raise google_exceptions.ServiceUnavailable(f"{operation} unavailable")

    def collection(self, name):
        return FakeCollection(self, name)

    def collection_group(self, name):
        return FakeCollectionGroup(self, name)

    def batch(self):
        return FakeBatch(self)

    def document_data(self, path):
        return copy.deepcopy(self.docs.get(path))


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        stored = bucket.objects.get(name)
        self.metadata = dict(stored['metadata']) if stored and stored['metadata'] else None

    def upload_from_string(self, data, content_type=None):
        self.bucket.upload_calls.append(self.name)
        if self.bucket.upload_failures > 0 or self.name in self.bucket.failing_uploads:
            self.bucket.upload_failures = max(0, self.bucket.upload_failures - 1)
            raise google_exceptions.ServiceUnavailable(f"Upload of {self.name} failed")
        self.bucket.objects[self.name] = {
            'data': bytes(data),
            'content_type': content_type,
            'metadata': dict(self.metadata or {}),
        }

    def patch(self):
        self.bucket.objects[self.name]['metadata'] = dict(self.metadata or {})

    def delete(self):
        self.bucket.delete_calls.append(self.name)
        if self.name in self.bucket.failing_deletes:
            raise google_exceptions.ServiceUnavailable(f"Delete of {self.name} failed")
        if self.name not in self.bucket.objects:
            raise google_exceptions.NotFound(f"No such object: {self.name}")
        del self.bucket.objects[self.name]


class FakeBucket:
    name = 'test-bucket'

    def __init__(self):
        self.objects = {}
        self.upload_calls = []
        self.delete_calls = []
        self.get_blob_calls = []
        self.upload_failures = 0
        self.get_blob_failures = 0
        self.failing_uploads = set()
        self.failing_deletes = set()

    def blob(self, name):
        return FakeBlob(self, name)

    def get_blob(self, name):
        self.get_blob_calls.append(name)
        if self.get_blob_failures > 0:
            self.get_blob_failures -= 1
            raise google_exceptions.Forbidden(f"Access to {name} denied")
        return FakeBlob(self, name) if name in self.objects else None

    def list_blobs(self, prefix=''):
        return [FakeBlob(self, name) for name in sorted(self.objects) if name.startswith(prefix)]

    def put(self, name, data=b'data', token='token-1'):
        self.objects[name] = {'data': data, 'content_type': 'image/jpeg', 'metadata': {'firebaseStorageDownloadTokens': token}}


def make_image(width=64, height=48, color=(200, 120, 40), image_format='JPEG'):
    output = io.BytesIO()
    Image.new('RGB', (width, height), color).save(output, format=image_format)
    return output.getvalue()


def make_noise_image(width=256, height=256, image_format='PNG'):
    """Random pixels do not compress, useful to exceed byte limits."""
    output = io.BytesIO()
    Image.frombytes('RGB', (width, height), os.urandom(width * height * 3)).save(output, format=image_format)
    return output.getvalue()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in (
        'ADMIN_EMAILS',
        'FUNCTIONS_BASE_URL',
        'CHECKOUT_FUNCTION_URL',
        'PROCESSING_NOTIFICATION_FUNCTIONS',
        'PROCESSED_IMAGE_MAX_BYTES',
        'STORAGE_UPLOAD_CEILING_BYTES',
        'FIREBASE_AUTH_EMULATOR_HOST',
        'FIREBASE_STORAGE_EMULATOR_HOST',
        'ALLOW_UPLOAD_PROXY',
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('FUNCTIONS_BASE_URL', 'https://functions.test')


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def project_store(db):
    return ProjectStore(db_client=db)


@pytest.fixture
def asset_store(bucket, sleeps):
    return AssetStore(bucket=bucket, sleep=sleeps.append)
