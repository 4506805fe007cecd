from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker


# Lazy initialization to prevent import-time loop binding issues
class Database:
    """
    The single store handle. Built once at startup and handed to every component
    that needs to open sessions; `init()` creates the schema if absent.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine = None
        self._session_maker = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self):
        if self._engine is None:
            connect_args = {"timeout": 30} if self.is_sqlite else {}
            self._engine = create_async_engine(self.url, echo=self.echo, connect_args=connect_args)
            if self.is_sqlite:
                event.listen(self._engine.sync_engine, "connect", _set_sqlite_pragma)
        return self._engine

    @property
    def session_maker(self):
        if self._session_maker is None:
            self._session_maker = sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_maker

    def session(self) -> AsyncSession:
        return self.session_maker()

    async def init(self):
        from sitestats.db.init_db import init_db

        await init_db(self)

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None


def _set_sqlite_pragma(dbapi_connection, _connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA busy_timeout=30000;")
    cursor.close()


async def get_db(request: Request):
    async with request.app.state.db.session() as session:
        yield session
