import os, sys, pytest
from datetime import datetime
# Ensure backend directory is on path so 'payrecon' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import payrecon
from payrecon import create_app, get_db
from payrecon.config.gateway import load_gateway_config
from payrecon.engine import Engine, EXTENSION_KEY
from payrecon.models.core import Base
from payrecon.utils.clock import FixedClock
# Import all model modules to ensure tables are registered before create_all
import payrecon.models.payment_transaction  # noqa: F401
import payrecon.models.sale  # noqa: F401
import payrecon.models.audit  # noqa: F401
from tests.test_utils_gateway import FakeDaraja, GATEWAY_TEST_CONFIG

NOW = datetime(2026, 3, 2, 10, 0, 0)

@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app(dict(GATEWAY_TEST_CONFIG))
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture(autouse=True)
def clean_tables(app_instance):
    yield
    session = get_db()
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    payrecon.SessionLocal.remove()

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def session(app_instance):
    # the scoped registry, so the test follows each request's session teardown
    return payrecon.SessionLocal

@pytest.fixture()
def clock():
    return FixedClock(NOW)

@pytest.fixture()
def gateway():
    return FakeDaraja()

@pytest.fixture()
def gateway_config():
    return load_gateway_config(GATEWAY_TEST_CONFIG)

@pytest.fixture()
def engine(app_instance, monkeypatch, gateway, clock, gateway_config):
    """Engine wired to the fake gateway and the fixed clock, installed on the app."""
    eng = Engine(gateway_config, client=gateway, clock=clock)
    monkeypatch.setitem(app_instance.extensions, EXTENSION_KEY, eng)
    return eng
