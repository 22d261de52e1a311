"""Pytest configuration and fixtures for offline sync tests."""
import io
import os
import tempfile
from types import SimpleNamespace
import pytest
from PIL import Image
from fca_backend.app import create_app
from fca_backend.config import SyncSettings
from fca_backend.models import db, User, Project
from fca_backend.blueprints.auth import issue_token, caller_for
from fca_backend.services.conflict_resolver import ConflictResolver
from fca_backend.services.entity_store import EntityStore
from fca_backend.services.errors import StorageError
from fca_backend.services.history import ChangeHistoryLogger
from fca_backend.services.idempotency import SyncReceiptStore
from fca_backend.services.ownership import OwnershipGuard
from fca_backend.services.sync_service import OfflineSyncService
from fca_shared.enums import UserRole, ConflictPolicy


class FakeBlobStore:
    """In-memory stand-in for CloudStorageService."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_on = None  # substring of a key whose upload should fail

    def put_object(self, key, data, mime_type=None):
        if self.fail_on and self.fail_on in key:
            raise StorageError(f"Failed to store {key}")
        self.objects[key] = (bytes(data), mime_type)
        return f"https://blobs.test/{key}"

    def delete_object(self, key):
        self.objects.pop(key, None)
        self.deleted.append(key)


def make_png(width=640, height=480, color=(200, 40, 40)):
    buffer = io.BytesIO()
    Image.new('RGB', (width, height), color).save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(
        log_dir=str(tmp_path / 'logs'),
        storage_local_path=str(tmp_path / 'blobs'),
        storage_retry_wait_seconds=0,
    )


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def app(settings, blob_store):
    """Create and configure a test app instance."""
    # Create temporary database for testing
    db_fd, db_path = tempfile.mkstemp()

    test_config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'FCA_SETTINGS': settings,
    }

    app = create_app(test_config, blob_store=blob_store)

    with app.app_context():
        db.create_all()

    yield app

    # Cleanup
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def seeded(app):
    """Two tenants, an admin, a project per tenant and a token per user.

    The acme project uses id 7 so scenarios can refer to it directly.
    """
    with app.app_context():
        alice = User(name='Alice Field', email='alice@acme.test', company='acme', role=UserRole.USER)
        bob = User(name='Bob Other', email='bob@globex.test', company='globex', role=UserRole.USER)
        admin = User(name='Ada Admin', email='admin@fca.test', company=None, role=UserRole.ADMIN)
        db.session.add_all([alice, bob, admin])
        db.session.flush()

        acme_project = Project(id=7, name='Acme HQ', company='acme', owner_id=alice.id)
        globex_project = Project(id=8, name='Globex Plant', company='globex', owner_id=bob.id)
        db.session.add_all([acme_project, globex_project])
        db.session.flush()

        tokens = {
            'alice': issue_token(alice),
            'bob': issue_token(bob),
            'admin': issue_token(admin),
        }
        db.session.commit()

        return SimpleNamespace(
            alice=caller_for(alice),
            bob=caller_for(bob),
            admin=caller_for(admin),
            project_id=acme_project.id,
            foreign_project_id=globex_project.id,
            tokens=tokens,
        )


@pytest.fixture
def auth_headers(seeded):
    def _headers(user='alice'):
        return {'Authorization': f"Bearer {seeded.tokens[user]}"}
    return _headers


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def make_service(app_ctx, settings, blob_store):
    """Build an OfflineSyncService on the current session with a chosen conflict policy."""
    def _make(policy=ConflictPolicy.SERVER_WINS):
        session = db.session
        return OfflineSyncService(
            session=session,
            guard=OwnershipGuard(session),
            store=EntityStore(session),
            blob_store=blob_store,
            history=ChangeHistoryLogger(session),
            receipts=SyncReceiptStore(session, settings.sync_receipt_ttl_hours),
            resolver=ConflictResolver(policy),
            settings=settings,
        )
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def make_photo():
    """Factory for small valid PNG payloads."""
    return make_png
