import os
from contextlib import contextmanager
from typing import Iterator, List, Optional

import pandas as pd
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.orm import Session, sessionmaker


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit the work done inside the block, or roll it back and re-raise."""
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ----------------------------
# DatabaseManager
# ----------------------------
class DatabaseManager:
    def __init__(self, db_uri: str, metadata=None):
        self.db_uri = db_uri

        engine_kwargs = dict(echo=False, future=True)

        if self.db_uri.startswith("sqlite"):
            self._ensure_sqlite_dir()
            # In-memory SQLite is per-connection; share one connection across sessions.
            if ":memory:" in self.db_uri:
                from sqlalchemy.pool import StaticPool

                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}

        # Setup SQLAlchemy Engine and Session
        self.engine = create_engine(self.db_uri, **engine_kwargs)
        if self.db_uri.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(bind=self.engine, autoflush=False)
        self.metadata = metadata

    def _ensure_sqlite_dir(self) -> None:
        path = self.db_uri[len("sqlite:///"):] if self.db_uri.startswith("sqlite:///") else ""
        directory = os.path.dirname(path)
        if path and ":memory:" not in path and directory:
            os.makedirs(directory, exist_ok=True)

    def create_all(self) -> None:
        """Create all tables of the bound metadata that do not exist yet."""
        if self.metadata is not None:
            self.metadata.create_all(self.engine)

    def get_db_name(self) -> str:
        """ Return the database filename from the URI. Example: 'sqlite:///database/eve_planner.db' -> 'eve_planner.db' """
        path = self.db_uri
        if path.startswith("sqlite:///"):
            path = path[10:]
        return os.path.basename(path)

    def list_tables(self) -> List[str]:
        """List all tables in the database."""
        return sorted(inspect(self.engine).get_table_names())

    def load_df(self, table_name: str, where: Optional[dict] = None) -> pd.DataFrame:
        """Load a table into a DataFrame, optionally filtered by column equality."""
        df = pd.read_sql_table(table_name, self.engine)
        for column, value in (where or {}).items():
            df = df[df[column] == value]
        return df.reset_index(drop=True)

