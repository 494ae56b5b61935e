import pytest
import uuid
from decimal import Decimal

import jwt
from sqlalchemy.orm import sessionmaker

from config import Config
from app import create_app
from app.database import Base, create_schema, get_session, get_engine


class TestConfig(Config):
    """Configuration for the test suite: file SQLite, no Redis."""
    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_DATABASE_URI = None  # set by the app fixture
    JWT_SECRET = 'test-secret-key-for-the-sales-ledger-suite'
    CACHE_ENABLED = False
    LEDGER_PAYMENT_MAX_RETRIES = 3
    LEDGER_OVERPAYMENT_POLICY = 'flag'


def make_token(agent_id, role='agent', secret=TestConfig.JWT_SECRET):
    """Bearer token as the identity service would issue it."""
    return jwt.encode({'userId': agent_id, 'role': role}, secret, algorithm='HS256')


def auth_headers(agent_id, role='agent'):
    return {'Authorization': f'Bearer {make_token(agent_id, role)}'}


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application instance for testing."""
    db_path = tmp_path_factory.mktemp('db') / 'ledger.sqlite'
    TestConfig.SQLALCHEMY_DATABASE_URI = f'sqlite:///{db_path}'
    app = create_app(TestConfig)
    create_schema()
    return app


@pytest.fixture(scope='function', autouse=True)
def clean_tables(app):
    """Empty every table after each test."""
    yield
    session = get_session()
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def app_context(app):
    """Application context for calling services directly."""
    with app.app_context():
        yield app


@pytest.fixture(scope='function')
def session(app_context):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def other_session(app):
    """A second, independent session playing a concurrent request."""
    factory = sessionmaker(bind=get_engine(), autoflush=False)
    session = factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def agent_id():
    return f'agent-{str(uuid.uuid4())[:8]}'


@pytest.fixture(scope='function')
def agent_headers(agent_id):
    return auth_headers(agent_id)


@pytest.fixture(scope='function')
def other_agent_headers():
    return auth_headers(f'agent-{str(uuid.uuid4())[:8]}')


@pytest.fixture(scope='function')
def admin_headers():
    return auth_headers('admin-1', role='admin')


@pytest.fixture(scope='function')
def widget_items():
    """3 x 1000 at 10% off: subtotal 3000, discount 300, final 2700."""
    return [{'itemName': 'Widget', 'quantity': 3, 'unitPrice': 1000, 'discount': 10}]


@pytest.fixture(scope='function')
def credit_sale(session, agent_id, widget_items):
    """Unpaid credit sale owned by agent_id (final amount 2700)."""
    from app.services.invoice_service import create_sale
    return create_sale(
        {'customerName': 'Ada Lovelace', 'items': widget_items, 'paymentMethod': 'credit'},
        session,
        agent_id
    )


@pytest.fixture(scope='function')
def thousand_credit_sale(session, agent_id):
    """Unpaid credit sale with a final amount of exactly 1000."""
    from app.services.invoice_service import create_sale
    sale = create_sale(
        {
            'customerName': 'Grace Hopper',
            'items': [{'itemName': 'Service plan', 'quantity': 1, 'unitPrice': 1000}],
            'paymentMethod': 'credit'
        },
        session,
        agent_id
    )
    assert sale.final_amount == Decimal('1000.00')
    return sale


@pytest.fixture(scope='function')
def token_for():
    """Factory for raw bearer tokens: token_for(agent_id, role='agent', secret=...)."""
    return make_token
