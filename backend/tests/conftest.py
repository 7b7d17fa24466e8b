import os

# Must be set before any entityforge import reads the settings.
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("NODE_ENV", "test")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import entityforge.database as _db_mod  # noqa: E402
from entityforge.database import Base  # noqa: E402
from entityforge.database import get_db  # noqa: E402
from entityforge.database import make_engine  # noqa: E402
from entityforge.database import make_sessionmaker  # noqa: E402
from entityforge.dependencies.services import get_lifecycle  # noqa: E402
from entityforge.dependencies.services import get_registry  # noqa: E402
from entityforge.models.models import EntityDefinition  # noqa: E402, F401
from entityforge.models.models import EntityRecord  # noqa: E402, F401
from entityforge.models.models import User  # noqa: E402, F401
from entityforge.schemas.schemas import Actor  # noqa: E402
from entityforge.services.audit import MemoryAuditRecorder  # noqa: E402
from entityforge.services.definition_registry import DefinitionRegistry  # noqa: E402
from entityforge.services.record_lifecycle import LifecycleManager  # noqa: E402

# Create a test database - using in-memory SQLite for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

test_engine = make_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool for in-memory database
)

TestingSessionLocal = make_sessionmaker(test_engine)

# Health checks and scripts go through the module-level factory.
_db_mod.default_session_factory = TestingSessionLocal

# Import app after all engine setup is in place
from entityforge.main import app  # noqa: E402


@pytest.fixture
def db_session():
    """
    Creates a fresh database for each test, then tears it down after the test is done.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def recorder():
    return MemoryAuditRecorder()


@pytest.fixture
def registry(recorder):
    return DefinitionRegistry(recorder=recorder)


@pytest.fixture
def lifecycle(recorder):
    return LifecycleManager(recorder=recorder)


@pytest.fixture
def actor():
    return Actor(id="42", display_name="Alice Admin")


@pytest.fixture
def other_actor():
    return Actor(id="43", display_name="Bob Builder")


@pytest.fixture
def make_definition(db_session, registry, actor):
    """Factory: ``make_definition("CUSTOMER", properties=..., required=..., versioning=True)``."""

    def _make(
        code="CUSTOMER",
        *,
        properties=None,
        required=None,
        activation=None,
        versioning=False,
        hierarchy=None,
        name=None,
    ):
        if properties is None:
            properties = {
                "customerCode": {"type": "string", "minLength": 3},
                "email": {"type": "string", "format": "email"},
                "tier": {"type": "string", "enum": ["basic", "gold"], "default": "basic"},
            }
        if required is None:
            required = ["customerCode"]
        config = {
            "activation": activation or {"enabled": True, "defaultState": True, "entityActive": True},
            "versioning": {"enabled": versioning},
            "hierarchy": hierarchy or {"enabled": False},
        }
        return registry.create(
            db_session,
            {
                "code": code,
                "name": name or code.title(),
                "schemaDefinition": {"type": "object", "properties": properties, "required": required},
                "derivedRecordConfig": config,
            },
            actor,
        )

    return _make


@pytest.fixture
def client(db_session, registry, lifecycle):
    """
    Create a FastAPI TestClient with the test database dependency.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle

    client = TestClient(app)
    yield client

    app.dependency_overrides = {}
