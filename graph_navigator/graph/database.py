import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from neo4j import AsyncGraphDatabase, AsyncDriver
from neo4j.exceptions import DriverError, Neo4jError, ServiceUnavailable, SessionExpired

from graph_navigator.config import (
    NEO4J_URI,
    NEO4J_USER,
    NEO4J_PASSWORD,
    NEO4J_DATABASE,
    DB_TIMEOUT_SECONDS,
)
from graph_navigator.deadline import Deadline, effective_timeout
from graph_navigator.errors import CollaboratorUnavailableError, QueryExecutionError

logger = logging.getLogger("graph_database")


class GraphSession:
    """Request-scoped wrapper over one driver session."""

    def __init__(self, session: Any, timeout: float = DB_TIMEOUT_SECONDS):
        self._session = session
        self.timeout = timeout

    async def run(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        deadline: Optional[Deadline] = None
    ) -> List[Any]:
        """
        Run a read query and materialise every record.

        Raises:
            QueryExecutionError: The database rejected or failed the query
            CollaboratorUnavailableError: Connection lost or the call timed out
        """
        timeout = effective_timeout(self.timeout, deadline)
        if timeout <= 0:
            raise CollaboratorUnavailableError("graph_database", "request deadline exceeded")

        logger.debug(f"Running query: {query} | params: {params}")
        try:
            return await asyncio.wait_for(self._collect(query, params or {}), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Query timed out after {timeout:.1f}s")
            raise CollaboratorUnavailableError("graph_database", f"no response within {timeout:.1f}s")
        except (ServiceUnavailable, SessionExpired) as e:
            logger.error(f"Graph database unavailable: {e}")
            raise CollaboratorUnavailableError("graph_database", str(e)) from e
        except Neo4jError as e:
            logger.warning(f"Query failed [{e.code}]: {e.message}")
            raise QueryExecutionError(e.message or str(e), query=query, code=e.code) from e
        except DriverError as e:
            logger.error(f"Driver error: {e}")
            raise CollaboratorUnavailableError("graph_database", str(e)) from e

    async def _collect(self, query: str, params: Dict[str, Any]) -> List[Any]:
        result = await self._session.run(query, params)
        return [record async for record in result]


class GraphDatabaseClient:
    """
    Graph database collaborator.

    Owns the driver; every request opens its own session through
    session(), which always closes it on exit.
    """

    def __init__(
        self,
        uri: str = NEO4J_URI,
        user: str = NEO4J_USER,
        password: str = NEO4J_PASSWORD,
        database: str = NEO4J_DATABASE,
        timeout: float = DB_TIMEOUT_SECONDS,
        driver: Optional[AsyncDriver] = None
    ):
        self.uri = uri
        self.user = user
        self.password = password
        self.database = database
        self.timeout = timeout
        self._driver = driver

    @property
    def driver(self) -> AsyncDriver:
        if self._driver is None:
            logger.info(f"Creating graph driver for {self.uri} (database: {self.database})")
            self._driver = AsyncGraphDatabase.driver(self.uri, auth=(self.user, self.password))
        return self._driver

    @asynccontextmanager
    async def session(self) -> AsyncIterator[GraphSession]:
        try:
            neo4j_session = self.driver.session(database=self.database)
        except DriverError as e:
            raise CollaboratorUnavailableError("graph_database", str(e)) from e

        try:
            yield GraphSession(neo4j_session, self.timeout)
        finally:
            await neo4j_session.close()

    async def close(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("Graph driver closed")
