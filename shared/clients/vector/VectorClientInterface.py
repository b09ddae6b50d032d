from abc import abstractmethod
from typing import NoReturn

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.clients.vector.models.CollectionInfo import CollectionInfo, DistanceMetric
from shared.clients.vector.models.QueryMatch import QueryMatch
from shared.clients.vector.models.VectorPoint import VectorPoint
from shared.models.errors import (
    BackendUnavailableError,
    CollectionNotFoundError,
    DimensionMismatchError,
    InvalidConfigError,
    StorageError,
)

from shared.helper.HelperConfig import HelperConfig


class VectorClientInterface(ClientInterface):
    """Common contract over vector databases.

    Filters are plain equality maps ({"document_id": "..."}) that each engine
    translates into its native filter language. Vector lengths are checked
    against the collection's dimensionality before anything is written or
    queried; vectors are never truncated or padded.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.upsert_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_UPSERT_BATCH_SIZE", default=100))
        # collection name -> vector size and metric
        self._dimensions: dict[str, int] = {}
        self._distances: dict[str, DistanceMetric] = {}

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "vector"

    ##########################################
    ################ ERRORS ##################
    ##########################################

    def _raise_for_transport_error(self, error: httpx.TransportError, url: str) -> NoReturn:
        raise BackendUnavailableError(
            f"Vector database '{self.get_engine_name()}' is unreachable at {url}: {error}",
            details={"backend": self.get_engine_name()},
        ) from error

    def _raise_for_status(self, response: httpx.Response, url: str) -> NoReturn:
        status = response.status_code
        details = {"backend": self.get_engine_name(), "status": status, "body": response.text[:200]}
        if status == 404:
            raise CollectionNotFoundError(f"Collection not found in '{self.get_engine_name()}' ({url})", details=details)
        if status >= 500 or status in (408, 429):
            raise BackendUnavailableError(
                f"Vector database '{self.get_engine_name()}' answered {status} for {url}", details=details
            )
        raise StorageError(f"Vector database '{self.get_engine_name()}' rejected the request to {url} ({status})", details=details)

    ##########################################
    ########### ENGINE OPERATIONS ############
    ##########################################

    @abstractmethod
    async def _do_create_collection(self, name: str, dimensions: int, distance: DistanceMetric, properties: dict) -> None:
        """Create the native collection/class."""
        pass

    @abstractmethod
    async def do_existence_check(self, name: str) -> bool:
        """Check whether a collection exists."""
        pass

    @abstractmethod
    async def _do_fetch_collection_info(self, name: str) -> CollectionInfo:
        """
        Raises:
            CollectionNotFoundError: If the collection does not exist.
        """
        pass

    @abstractmethod
    async def _do_drop_collection(self, name: str) -> None:
        pass

    @abstractmethod
    async def _do_upsert_batch(self, name: str, points: list[VectorPoint]) -> None:
        """Insert or overwrite one batch of points, keyed by point id."""
        pass

    @abstractmethod
    async def _do_query(self, name: str, vector: list[float], top_k: int, filter: dict | None) -> list[QueryMatch]:
        pass

    @abstractmethod
    async def do_delete_points(self, name: str, ids: list[str]) -> None:
        """Delete points by id."""
        pass

    @abstractmethod
    async def do_delete_points_by_filter(self, name: str, filter: dict) -> None:
        """Delete every point whose payload matches the equality filter."""
        pass

    @abstractmethod
    async def do_count(self, name: str, filter: dict | None = None) -> int:
        """Count points, optionally restricted by an equality filter."""
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_create_collection(
        self,
        name: str,
        dimensions: int,
        distance: DistanceMetric | str = DistanceMetric.COSINE,
        properties: dict | None = None,
    ) -> None:
        """Create a collection for vectors of a fixed size.

        Args:
            name (str): Collection name.
            dimensions (int): Vector size every point must match.
            distance (DistanceMetric | str): Distance metric.
            properties (dict | None): Collection metadata (embedding model and provider).

        Raises:
            InvalidConfigError: On non-positive dimensions or an unknown metric.
        """
        if dimensions <= 0:
            raise InvalidConfigError(f"Collection dimensions must be positive, got {dimensions}.")
        try:
            distance = DistanceMetric(distance.lower() if isinstance(distance, str) else distance)
        except ValueError:
            raise InvalidConfigError(f"Unsupported distance metric '{distance}'.")
        await self._do_create_collection(name, dimensions, distance, properties or {})
        self._dimensions[name] = dimensions
        self._distances[name] = distance
        self.logging.info("Created collection '%s' (%d dims, %s) in '%s'", name, dimensions, distance.value, self.get_engine_name())

    async def do_fetch_collection_info(self, name: str) -> CollectionInfo:
        info = await self._do_fetch_collection_info(name)
        self._dimensions[name] = info.size
        self._distances[name] = info.distance
        return info

    async def do_drop_collection(self, name: str) -> None:
        await self._do_drop_collection(name)
        self._dimensions.pop(name, None)
        self._distances.pop(name, None)
        self.logging.info("Dropped collection '%s' from '%s'", name, self.get_engine_name())

    async def _get_dimensions(self, name: str) -> int:
        if name not in self._dimensions:
            await self.do_fetch_collection_info(name)
        return self._dimensions[name]

    async def _get_distance(self, name: str) -> DistanceMetric:
        if name not in self._distances:
            await self.do_fetch_collection_info(name)
        return self._distances[name]

    def _check_dimensions(self, name: str, expected: int, vector: list[float]) -> None:
        if len(vector) != expected:
            raise DimensionMismatchError(
                f"Vector of length {len(vector)} does not fit collection '{name}' ({expected} dims).",
                details={"collection": name, "expected": expected, "actual": len(vector)},
            )

    async def do_upsert_points(self, name: str, points: list[VectorPoint]) -> int:
        """Upsert points in batches of VECTOR_UPSERT_BATCH_SIZE.

        Every vector is checked before the first batch is sent, so a dimension
        mismatch never leaves a partially written set behind.

        Returns:
            int: Number of points written.

        Raises:
            DimensionMismatchError: If any vector length differs from the collection's.
            CollectionNotFoundError: If the collection does not exist.
            BackendUnavailableError: If the backend cannot be reached.
        """
        if not points:
            return 0
        expected = await self._get_dimensions(name)
        for point in points:
            self._check_dimensions(name, expected, point.vector)
        for batch_start in range(0, len(points), self.upsert_batch_size):
            await self._do_upsert_batch(name, points[batch_start:batch_start + self.upsert_batch_size])
        self.logging.debug("Upserted %d point(s) into '%s' on '%s'", len(points), name, self.get_engine_name())
        return len(points)

    async def do_query(self, name: str, vector: list[float], top_k: int = 5, filter: dict | None = None) -> list[QueryMatch]:
        """Return the top_k closest points, best match first.

        Raises:
            InvalidConfigError: If top_k is not positive.
            DimensionMismatchError: If the query vector does not fit the collection.
        """
        if top_k <= 0:
            raise InvalidConfigError(f"top_k must be positive, got {top_k}.")
        self._check_dimensions(name, await self._get_dimensions(name), vector)
        matches = await self._do_query(name, vector, top_k, filter)
        return sorted(matches, key=lambda match: match.score, reverse=True)
