from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorClientInterface import VectorClientInterface
from shared.clients.vector.models.CollectionInfo import CollectionInfo, DistanceMetric
from shared.clients.vector.models.QueryMatch import QueryMatch
from shared.clients.vector.models.VectorPoint import VectorPoint
from shared.models.config import EnvConfig
from shared.models.errors import InvalidConfigError, StorageError

_DISTANCES = {
    DistanceMetric.COSINE: "Cosine",
    DistanceMetric.DOT: "Dot",
    DistanceMetric.EUCLID: "Euclid",
}


class VectorClientQdrant(VectorClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self, name: str) -> str:
        return f"/collections/{name}"

    def _get_endpoint_check_collection_existence(self, name: str) -> str:
        return f"/collections/{name}/exists"

    def _get_endpoint_points(self, name: str) -> str:
        return f"/collections/{name}/points"

    def _get_endpoint_search(self, name: str) -> str:
        return f"/collections/{name}/points/search"

    def _get_endpoint_delete_points(self, name: str) -> str:
        return f"/collections/{name}/points/delete"

    def _get_endpoint_count(self, name: str) -> str:
        return f"/collections/{name}/points/count"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_filter_payload(self, filter: dict | None) -> dict | None:
        """Translate an equality map into a Qdrant "must" filter."""
        if not filter:
            return None
        return {"must": [{"key": key, "match": {"value": value}} for key, value in filter.items()]}

    def get_search_payload(self, vector: list[float], top_k: int, filter: dict | None) -> dict:
        payload = {"vector": vector, "limit": top_k, "with_payload": True}
        qdrant_filter = self.get_filter_payload(filter)
        if qdrant_filter:
            payload["filter"] = qdrant_filter
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_collection_info(self, name: str, raw_response: dict) -> CollectionInfo:
        try:
            vectors = raw_response["result"]["config"]["params"]["vectors"]
            distance = next(k for k, v in _DISTANCES.items() if v == vectors.get("distance", "Cosine"))
            return CollectionInfo(name=name, size=int(vectors["size"]), distance=distance)
        except (KeyError, TypeError, StopIteration) as e:
            raise StorageError(f"Unexpected collection info from Qdrant for '{name}': {e}") from e

    def extract_matches(self, raw_response: dict, distance: DistanceMetric = DistanceMetric.COSINE) -> list[QueryMatch]:
        """Qdrant reports a distance as score for Euclid collections, converted so that higher is closer."""
        matches = []
        for hit in raw_response.get("result", []):
            score = float(hit.get("score", 0.0))
            if distance == DistanceMetric.EUCLID:
                score = 1.0 - score
            matches.append(QueryMatch(id=str(hit["id"]), score=score, payload=hit.get("payload") or {}))
        return matches

    ##########################################
    ########### ENGINE OPERATIONS ############
    ##########################################

    async def _do_create_collection(self, name: str, dimensions: int, distance: DistanceMetric, properties: dict) -> None:
        await self.do_request(
            method="PUT",
            json={"vectors": {"size": dimensions, "distance": _DISTANCES[distance]}},
            endpoint=self._get_endpoint_collection(name),
        )
        # payload indexes for whole-document deletes and filtered queries
        for field_name in ("document_id", "modality"):
            await self.do_request(
                method="PUT",
                json={"field_name": field_name, "field_schema": "keyword"},
                endpoint=f"{self._get_endpoint_collection(name)}/index",
            )

    async def do_existence_check(self, name: str) -> bool:
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence(name))
        return bool(self._parse_json(response).get("result", {}).get("exists"))

    async def _do_fetch_collection_info(self, name: str) -> CollectionInfo:
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_collection(name))
        return self.extract_collection_info(name, self._parse_json(response))

    async def _do_drop_collection(self, name: str) -> None:
        await self.do_request(method="DELETE", endpoint=self._get_endpoint_collection(name))

    async def _do_upsert_batch(self, name: str, points: list[VectorPoint]) -> None:
        await self.do_request(
            method="PUT",
            json={"points": [point.model_dump() for point in points]},
            params={"wait": "true"},
            endpoint=self._get_endpoint_points(name),
        )

    async def _do_query(self, name: str, vector: list[float], top_k: int, filter: dict | None) -> list[QueryMatch]:
        distance = await self._get_distance(name)
        response = await self.do_request(
            method="POST",
            json=self.get_search_payload(vector, top_k, filter),
            endpoint=self._get_endpoint_search(name),
        )
        return self.extract_matches(self._parse_json(response), distance)

    async def do_delete_points(self, name: str, ids: list[str]) -> None:
        if not ids:
            return
        await self.do_request(
            method="POST",
            json={"points": ids},
            params={"wait": "true"},
            endpoint=self._get_endpoint_delete_points(name),
        )

    async def do_delete_points_by_filter(self, name: str, filter: dict) -> None:
        if not filter:
            raise InvalidConfigError("Refusing to delete with an empty filter.")
        await self.do_request(
            method="POST",
            json={"filter": self.get_filter_payload(filter)},
            params={"wait": "true"},
            endpoint=self._get_endpoint_delete_points(name),
        )

    async def do_count(self, name: str, filter: dict | None = None) -> int:
        payload: dict = {"exact": True}
        qdrant_filter = self.get_filter_payload(filter)
        if qdrant_filter:
            payload["filter"] = qdrant_filter
        response = await self.do_request(method="POST", json=payload, endpoint=self._get_endpoint_count(name))
        return int(self._parse_json(response).get("result", {}).get("count", 0))
