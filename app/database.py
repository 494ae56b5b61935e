"""Database configuration and initialization."""
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def _engine_options(app) -> dict:
    """Pool options; SQLite (tests, local runs) does not take pool sizing."""
    options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    url = make_url(app.config['SQLALCHEMY_DATABASE_URI'])
    if url.get_backend_name() == 'sqlite':
        options['connect_args'] = {'check_same_thread': False}
    else:
        options['pool_size'] = 10
        options['max_overflow'] = 20
    return options


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    if db_session is not None:
        db_session.remove()
    if engine is not None:
        engine.dispose()

    engine = create_engine(app.config['SQLALCHEMY_DATABASE_URI'], **_engine_options(app))

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_schema():
    """Create all tables for the registered models."""
    import app.models  # noqa: F401  (registers mappers on Base.metadata)
    Base.metadata.create_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def get_engine():
    """Get the bound engine."""
    return engine
