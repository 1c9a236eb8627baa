# manages the local sqlite store, provides connect() to the rest of the db package
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from sqlite3 import Row

import aiosqlite

from utils.config import settings
from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = settings.db_path
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

_initialized = False
_init_lock = asyncio.Lock()


async def _init_db(conn: aiosqlite.Connection) -> None:
    _logger.info(f"Initializing database at {DB_PATH}...")
    await conn.executescript(SCHEMA_PATH.read_text())
    await conn.commit()


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection.

    Creates the parent directory and the schema on first use.
    """
    global _initialized
    if DB_PATH != ":memory:":
        Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(DB_PATH)
    conn.row_factory = Row

    try:
        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    await _init_db(conn)
                    _initialized = True
        yield conn
    finally:
        await conn.close()
