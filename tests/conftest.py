import io
import os

import pytest

# Tests run against an in-memory SQLite database created on startup
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['DB_CREATE_ALL'] = 'true'

from supplier_portal import create_app
from supplier_portal.database import Base, get_session
from supplier_portal.models import LogisticsCompany, Product, ProductType
from supplier_portal.services import storage_service


class FakeFile:
    """Minimal uploaded file: name, MIME type, size and a readable stream."""

    def __init__(self, filename='photo.jpg', content_type='image/jpeg', size=1024):
        self.filename = filename
        self.content_type = content_type
        self.size = size
        self.stream = io.BytesIO(b'x' * min(size, 64))


class FakeStore:
    """In-memory order store recording every call."""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.created = []
        self.updated = []
        self.next_id = 41

    def create_order(self, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self.next_id += 1
        self.created.append((self.next_id, payload))
        return self.next_id

    def update_order(self, order_id, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self.updated.append((order_id, payload))


class FakeTransport:
    """Image transport that reports progress and fails for chosen file names."""

    def __init__(self, failing=(), on_upload=None):
        self.failing = set(failing)
        self.on_upload = on_upload
        self.calls = []

    def upload_item_image(self, order_id, item_index, file, on_progress=None):
        self.calls.append((order_id, item_index, file.filename))
        if self.on_upload is not None:
            self.on_upload(file)
        if on_progress is not None:
            on_progress(0)
            on_progress(50)
        if file.filename in self.failing:
            raise RuntimeError('Connection reset')
        if on_progress is not None:
            on_progress(100)
        return {'url': f'https://cdn.test/{order_id}/{item_index}/{file.filename}'}


class FakeStorage:
    """Stands in for StorageService in HTTP tests."""

    def __init__(self):
        self.uploads = []
        self.failing = set()

    def upload_file(self, file, object_name, content_type=None, on_progress=None):
        if file.filename in self.failing:
            raise ValueError('Upload failed')
        if on_progress is not None:
            on_progress(0)
            on_progress(100)
        self.uploads.append(object_name)
        return f'https://cdn.test/{object_name}'


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.Config')
    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session; every table is emptied after the test."""
    session = get_session()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture(scope='function')
def catalog(session):
    """One product type, one logistics company and one product."""
    product_type = ProductType(name='Shirts', active=True)
    company = LogisticsCompany(name='Andreani', contact_phone='555-0100', active=True)
    session.add_all([product_type, company])
    session.commit()

    product = Product(
        name='Basic Tee',
        code='TEE-001',
        product_type_id=product_type.id,
        cost_price=100,
        image='https://cdn.test/products/tee.jpg',
        images=['https://cdn.test/products/tee-front.jpg', 'https://cdn.test/products/tee-back.jpg'],
        active=True
    )
    session.add(product)
    session.commit()

    return {
        'product_type_id': product_type.id,
        'logistics_company_id': company.id,
        'product_id': product.id,
    }


@pytest.fixture(scope='function')
def fake_storage(monkeypatch):
    """Replace the S3 storage singleton."""
    storage = FakeStorage()
    monkeypatch.setattr(storage_service, '_storage_service', storage)
    return storage


@pytest.fixture
def make_file():
    return FakeFile


@pytest.fixture
def make_store():
    return FakeStore


@pytest.fixture
def make_transport():
    return FakeTransport
