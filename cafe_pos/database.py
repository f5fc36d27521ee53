"""SQLAlchemy engine and scoped session for the POS models."""
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Declarative base shared by cafe_pos.models
Base = declarative_base()

# Set by init_db
engine = None
db_session = None


def _engine_options(database_uri: str, echo: bool) -> dict:
    """Pool settings; in-memory sqlite needs a single shared connection."""
    if database_uri.startswith('sqlite'):
        options = {'echo': echo, 'connect_args': {'check_same_thread': False}}
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            options['poolclass'] = StaticPool
        return options
    return {
        'echo': echo,
        'pool_pre_ping': True,  # Enable connection health checks
        'pool_size': 10,
        'max_overflow': 20,
    }


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(
        database_uri,
        **_engine_options(database_uri, app.config.get('SQLALCHEMY_ECHO', False))
    )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    if app.config.get('AUTO_CREATE_SCHEMA', False):
        # Models must be imported so their tables are registered on Base
        import cafe_pos.models  # noqa: F401
        Base.metadata.create_all(bind=engine)

    # One session per app context
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Roll back on error, then release the session."""
        if exception:
            db_session.rollback()
        db_session.remove()


def get_session():
    """Get database session."""
    return db_session
