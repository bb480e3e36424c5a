"""
Safe KuzuDB Connection Manager

Provides thread-safe access to KuzuDB connections with proper isolation
and concurrency control. Every read and write in the application goes
through one shared manager instance.
"""

import threading
import logging
import kuzu  # type: ignore
import os
import time
from typing import Optional, Dict, Any, List, Generator, Tuple
from contextlib import contextmanager
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# Logging controls
_QUERY_LOG_ENABLED = os.getenv('KUZU_QUERY_LOG', 'false').lower() in ('1', 'true', 'on', 'yes')
try:
    _SLOW_QUERY_MS = int(os.getenv('KUZU_SLOW_QUERY_MS', '150'))
except ValueError:
    _SLOW_QUERY_MS = 150


NODE_TABLES = [
    """
    CREATE NODE TABLE Account(
        id STRING,
        name STRING,
        parent_account_id STRING,
        settings STRING,
        features STRING,
        created_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE User(
        id STRING,
        username STRING,
        password_hash STRING,
        name STRING,
        short_name STRING,
        sortable_name STRING,
        pronouns STRING,
        time_zone STRING,
        account_id STRING,
        workflow_state STRING,
        is_fake_student BOOLEAN,
        created_at TIMESTAMP,
        updated_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE CommunicationChannel(
        id STRING,
        user_id STRING,
        channel_path STRING,
        path_type STRING,
        position INT64,
        workflow_state STRING,
        created_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE NotificationPolicy(
        id STRING,
        communication_channel_id STRING,
        notification STRING,
        frequency STRING,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE UserProfile(
        id STRING,
        bio STRING,
        title STRING,
        links STRING,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE UserService(
        id STRING,
        user_id STRING,
        service STRING,
        service_user_name STRING,
        service_user_id STRING,
        visible BOOLEAN,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE AccountUser(
        id STRING,
        account_id STRING,
        user_id STRING,
        membership_type STRING,
        workflow_state STRING,
        created_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE Course(
        id STRING,
        name STRING,
        account_id STRING,
        workflow_state STRING,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE Enrollment(
        id STRING,
        user_id STRING,
        course_id STRING,
        enrollment_type STRING,
        workflow_state STRING,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE StudentGroup(
        id STRING,
        name STRING,
        context_type STRING,
        context_id STRING,
        workflow_state STRING,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE GroupMembership(
        id STRING,
        group_id STRING,
        user_id STRING,
        workflow_state STRING,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE AccessToken(
        id STRING,
        user_id STRING,
        purpose STRING,
        token_hash STRING,
        created_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE OutcomeGroup(
        id STRING,
        title STRING,
        description STRING,
        context_type STRING,
        context_id STRING,
        parent_id STRING,
        is_root BOOLEAN,
        workflow_state STRING,
        created_at TIMESTAMP,
        updated_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
    """
    CREATE NODE TABLE LearningOutcome(
        id STRING,
        title STRING,
        display_name STRING,
        description STRING,
        context_type STRING,
        context_id STRING,
        workflow_state STRING,
        created_at TIMESTAMP,
        PRIMARY KEY(id)
    )
    """,
]

REL_TABLES = [
    """
    CREATE REL TABLE PARENT_GROUP(
        FROM OutcomeGroup TO OutcomeGroup,
        created_at TIMESTAMP
    )
    """,
    """
    CREATE REL TABLE CONTAINS_OUTCOME(
        FROM OutcomeGroup TO LearningOutcome,
        created_at TIMESTAMP
    )
    """,
]


def _to_kuzu_value(value: Any) -> Any:
    """Kuzu TIMESTAMP columns hold naive UTC values."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SafeKuzuManager:
    """
    Thread-safe KuzuDB connection manager that prevents concurrent access issues.

    Key Features:
    - Thread-safe initialization with proper locking
    - Connection-per-request pattern to avoid shared state
    - Automatic connection cleanup
    - User-scoped connection tracking for debugging
    """

    def __init__(self, database_path: Optional[str] = None):
        """Initialize manager state (no heavy I/O)."""
        if database_path:
            self.database_path = database_path
        else:
            kuzu_dir = os.getenv('KUZU_DB_PATH', 'data/kuzu')
            self.database_path = os.path.join(kuzu_dir, 'canvas_lite.db')

        # Reentrant lock for nested calls
        self._lock = threading.RLock()
        self._database: Optional[kuzu.Database] = None
        self._is_initialized = False

        # Connection tracking for debugging and monitoring
        self._active_connections: Dict[int, Dict[str, Any]] = {}
        self._connection_count = 0
        self._total_connections_created = 0

        self._last_access_time: Optional[datetime] = None
        self._initialization_time: Optional[datetime] = None
        self._lock_wait_times: List[float] = []

        logger.info(f"SafeKuzuManager initialized for database: {self.database_path}")

    def _get_thread_info(self) -> Dict[str, Any]:
        current = threading.current_thread()
        return {
            'thread_id': threading.get_ident(),
            'thread_name': current.name,
            'is_main_thread': current is threading.main_thread(),
        }

    def _initialize_database(self) -> None:
        """
        Initialize the KuzuDB database instance.

        Called with the manager lock held, only once per manager.
        """
        if self._is_initialized:
            return

        start_time = time.time()
        thread_info = self._get_thread_info()
        logger.info(f"[THREAD-{thread_info['thread_id']}:{thread_info['thread_name']}] "
                    f"Initializing KuzuDB database...")
        try:
            os.makedirs(os.path.dirname(self.database_path) or '.', exist_ok=True)
            self._database = kuzu.Database(self.database_path)
            self._initialize_schema()

            self._is_initialized = True
            self._initialization_time = datetime.now(timezone.utc)
            logger.info(f"KuzuDB database initialized successfully in {time.time() - start_time:.3f}s")
        except Exception as e:
            logger.error(f"[THREAD-{thread_info['thread_id']}:{thread_info['thread_name']}] "
                         f"Failed to initialize KuzuDB database: {e}")
            self._is_initialized = False
            self._database = None
            raise

    def _initialize_schema(self) -> None:
        """Create node and relationship tables, skipping ones that already exist."""
        if self._database is None:
            raise RuntimeError("Database not initialized")

        tables_created = 0
        tables_existed = 0
        # Direct connection; get_connection would recurse into initialization
        conn = kuzu.Connection(self._database)
        try:
            for query in NODE_TABLES + REL_TABLES:
                try:
                    conn.execute(query)
                    tables_created += 1
                except Exception as e:
                    if "already exists" in str(e).lower():
                        tables_existed += 1
                        continue
                    logger.error(f"Failed to create table: {e}")
                    raise
        finally:
            conn.close()
        logger.info(f"Kuzu schema ensured: {tables_created} created, {tables_existed} already existed")

    @contextmanager
    def get_connection(self, user_id: Optional[str] = None, operation: str = "unknown") -> Generator[kuzu.Connection, None, None]:
        """
        Get a thread-safe KuzuDB connection with automatic cleanup.

        Example:
            with manager.get_connection(user_id="user123", operation="move_group") as conn:
                conn.execute("MATCH (g:OutcomeGroup) RETURN g.title")
        """
        lock_start_time = time.time()
        thread_info = self._get_thread_info()

        with self._lock:
            lock_wait_time = time.time() - lock_start_time
            self._lock_wait_times.append(lock_wait_time)
            if len(self._lock_wait_times) > 100:
                self._lock_wait_times = self._lock_wait_times[-50:]
            if lock_wait_time > 0.1:
                logger.warning(f"[THREAD-{thread_info['thread_id']}:{thread_info['thread_name']}] "
                               f"Long lock wait: {lock_wait_time:.3f}s for operation '{operation}'")

            if not self._is_initialized:
                self._initialize_database()
            if self._database is None:
                raise RuntimeError("KuzuDB database not properly initialized")

            connection = kuzu.Connection(self._database)
            self._connection_count += 1
            self._total_connections_created += 1
            connection_id = self._total_connections_created
            self._last_access_time = datetime.now(timezone.utc)
            self._active_connections[thread_info['thread_id']] = {
                'connection_id': connection_id,
                'user_id': user_id,
                'operation': operation,
                'created_at': self._last_access_time.isoformat(),
                'thread_info': thread_info,
            }
            logger.debug(f"Created connection #{connection_id} for operation '{operation}' "
                         f"(user: {user_id or 'anonymous'})")

        try:
            yield connection
        except Exception as e:
            logger.error(f"[THREAD-{thread_info['thread_id']}:{thread_info['thread_name']}] "
                         f"Error during KuzuDB operation '{operation}': {e}")
            raise
        finally:
            with self._lock:
                connection.close()
                self._connection_count -= 1
                self._active_connections.pop(thread_info['thread_id'], None)
                logger.debug(f"Closed connection #{connection_id} for operation '{operation}'")

    def execute_query(self, query: str, params: Optional[Dict[str, Any]] = None,
                      user_id: Optional[str] = None, operation: str = "query") -> List[Dict[str, Any]]:
        """
        Execute a query and return its rows as dicts keyed by column name.

        Rows are read while the connection is still open.
        """
        if _QUERY_LOG_ENABLED:
            q_snippet = ' '.join(query.split())[:120]
            logger.info(f"[KUZU] execute_query op='{operation}' q='{q_snippet}'")

        bound = {k: _to_kuzu_value(v) for k, v in (params or {}).items()}
        with self.get_connection(user_id=user_id, operation=operation) as conn:
            t0 = time.time()
            result = conn.execute(query, bound)
            if isinstance(result, list):
                result = result[-1] if result else None
            rows: List[Dict[str, Any]] = []
            if result is not None:
                columns = result.get_column_names()
                while result.has_next():
                    rows.append(dict(zip(columns, result.get_next())))
            elapsed_ms = (time.time() - t0) * 1000
            if elapsed_ms >= _SLOW_QUERY_MS:
                logger.warning(f"[KUZU] slow query op='{operation}' took {elapsed_ms:.0f}ms")
            return rows

    def execute_write_batch(self, statements: List[Tuple[str, Dict[str, Any]]],
                            user_id: Optional[str] = None, operation: str = "write_batch") -> None:
        """
        Run several write statements as one transaction on one connection.

        The manager lock is held until commit, so batches from other threads
        cannot interleave with this one.
        """
        with self._lock:
            with self.get_connection(user_id=user_id, operation=operation) as conn:
                conn.execute("BEGIN TRANSACTION")
                try:
                    for query, params in statements:
                        conn.execute(query, {k: _to_kuzu_value(v) for k, v in (params or {}).items()})
                except Exception:
                    try:
                        conn.execute("ROLLBACK")
                    except RuntimeError as rollback_error:
                        # Kuzu may already have rolled back the failed transaction
                        logger.warning(f"ROLLBACK after failed '{operation}' raised: {rollback_error}")
                    raise
                conn.execute("COMMIT")

    def query_value(self, query: str, params: Optional[Dict[str, Any]] = None,
                    user_id: Optional[str] = None, operation: str = "query", default: Any = None) -> Any:
        """Return the first column of the first row, or ``default``."""
        rows = self.execute_query(query, params, user_id=user_id, operation=operation)
        if not rows:
            return default
        return next(iter(rows[0].values()), default)

    def get_health_status(self) -> Dict[str, Any]:
        """Health and performance metrics for the health endpoint."""
        with self._lock:
            avg_lock_wait = (sum(self._lock_wait_times) / len(self._lock_wait_times)
                             if self._lock_wait_times else 0.0)
            return {
                'database_status': {
                    'is_initialized': self._is_initialized,
                    'database_path': self.database_path,
                    'initialization_time': self._initialization_time.isoformat() if self._initialization_time else None,
                    'last_access_time': self._last_access_time.isoformat() if self._last_access_time else None,
                },
                'connection_metrics': {
                    'active_connections': self._connection_count,
                    'total_connections_created': self._total_connections_created,
                    'active_threads': len(self._active_connections),
                },
                'performance_metrics': {
                    'average_lock_wait_ms': round(avg_lock_wait * 1000, 2),
                    'max_lock_wait_ms': round(max(self._lock_wait_times, default=0.0) * 1000, 2),
                    'lock_samples': len(self._lock_wait_times),
                },
            }

    def force_reset(self) -> None:
        """
        Force reset the database instance (for testing/recovery only).
        """
        with self._lock:
            logger.warning("Force resetting KuzuDB connection - this should only happen in tests or recovery!")
            self._database = None
            self._is_initialized = False
            self._active_connections.clear()
            self._connection_count = 0
            self._last_access_time = None
            self._initialization_time = None
            self._lock_wait_times.clear()


# Global thread-safe instance
_safe_kuzu_manager: Optional[SafeKuzuManager] = None
_manager_lock = threading.Lock()


def get_safe_kuzu_manager() -> SafeKuzuManager:
    """
    Get the global thread-safe KuzuDB manager instance.
    """
    global _safe_kuzu_manager

    # Double-checked locking pattern for thread-safe singleton
    if _safe_kuzu_manager is None:
        with _manager_lock:
            if _safe_kuzu_manager is None:
                _safe_kuzu_manager = SafeKuzuManager()
                logger.info("Global SafeKuzuManager instance created")

    return _safe_kuzu_manager


def reset_safe_kuzu_manager(database_path: Optional[str] = None) -> None:
    """
    Reset the global SafeKuzuManager instance.

    Useful in tests to get a fresh database per test. Optionally provide a
    database_path to immediately seed a new manager with that path.
    """
    global _safe_kuzu_manager
    with _manager_lock:
        if _safe_kuzu_manager is not None:
            _safe_kuzu_manager.force_reset()
        _safe_kuzu_manager = SafeKuzuManager(database_path) if database_path else None


def safe_query_value(query: str, params: Optional[Dict[str, Any]] = None, user_id: Optional[str] = None,
                     operation: str = "query", default: Any = None) -> Any:
    """Execute a query and return the first column of the first row or default."""
    return get_safe_kuzu_manager().query_value(query, params, user_id=user_id, operation=operation,
                                               default=default)


def get_kuzu_health_status() -> Dict[str, Any]:
    return get_safe_kuzu_manager().get_health_status()
