from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from pharmacy_inventory.config import config
from pharmacy_inventory.exceptions import DatabaseError

class Database:
    """Database connection manager for the Pharmacy Inventory core."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Database, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the database connection if not already initialized."""
        if self._initialized:
            return

        self._engine = None
        self._session_factory = None
        self._session = None
        self._initialized = True

    def initialize(self, connection_string=None):
        """Initialize database connection.

        Args:
            connection_string: Optional database connection string.
                              If not provided, will use configuration.
        """
        if connection_string is None:
            connection_string = config.get_db_url()

        echo = config.get_boolean('DATABASE', 'echo', False)

        try:
            self._engine = build_engine(connection_string, echo=echo)
        except Exception as e:
            raise DatabaseError(f"Could not create engine for {connection_string}: {str(e)}")

        if self._session is not None:
            self._session.remove()
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._session = scoped_session(self._session_factory)

    def create_all_tables(self):
        """Create all tables defined in the models."""
        from pharmacy_inventory.models import Base
        Base.metadata.create_all(self.engine)

    def drop_all_tables(self):
        """Drop all tables from the database."""
        from pharmacy_inventory.models import Base
        Base.metadata.drop_all(self.engine)

    @property
    def session(self):
        """Get the current session registry."""
        if self._session is None:
            self.initialize()
        return self._session

    @property
    def engine(self):
        """Get the database engine."""
        if self._engine is None:
            self.initialize()
        return self._engine

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope around a series of operations."""
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def build_engine(connection_string, echo=False):
    """Create an engine, sharing a single connection for in-memory SQLite."""
    if connection_string in ('sqlite://', 'sqlite:///:memory:'):
        return create_engine(
            connection_string,
            echo=echo,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    if connection_string.startswith('sqlite'):
        return create_engine(
            connection_string,
            echo=echo,
            connect_args={'check_same_thread': False}
        )
    return create_engine(
        connection_string,
        echo=echo,
        pool_size=config.get_int('DATABASE', 'pool_size', 10),
        max_overflow=config.get_int('DATABASE', 'max_overflow', 20),
        pool_timeout=config.get_int('DATABASE', 'pool_timeout', 30),
        pool_recycle=config.get_int('DATABASE', 'pool_recycle', 1800)
    )

# Global database instance
db = Database()

@contextmanager
def session_scope():
    """Session scope context manager."""
    with db.session_scope() as session:
        yield session
