import json
import re

from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorClientInterface import VectorClientInterface
from shared.clients.vector.models.CollectionInfo import CollectionInfo, DistanceMetric
from shared.clients.vector.models.QueryMatch import QueryMatch
from shared.clients.vector.models.VectorPoint import VectorPoint
from shared.models.config import EnvConfig
from shared.models.errors import CollectionNotFoundError, InvalidConfigError, StorageError

# the identity object of every class holds the collection metadata
IDENTITY_ID = "00000000-0000-0000-0000-000000000000"

_DISTANCES = {
    DistanceMetric.COSINE: "cosine",
    DistanceMetric.DOT: "dot",
    DistanceMetric.EUCLID: "l2-squared",
}

_IDENTITY_PROPERTIES = {
    "collection_name": "text",
    "collection_size": "int",
    "embedding_provider": "text",
    "embedding_model": "text",
}

# weaviate coerces untyped properties on first insert, so every payload field is declared up front
_ITEM_PROPERTIES = {
    "modality": "text",
    "document_id": "text",
    "chunk_index": "int",
    "chunk_text": "text",
    "content_hash": "text",
    "image_id": "text",
    "image_data_ref": "text",
    "description": "text",
}

_CLASS_NAME = re.compile(r"^[A-Za-z][_0-9A-Za-z]*$")


class VectorClientWeaviate(VectorClientInterface):
    """Weaviate backend.

    Collections map to classes (first letter upper-cased) with vectorizer "none".
    Weaviate keeps no vector size in the schema, so each class carries an
    identity object under the nil UUID storing size, model and provider. That
    object is excluded from every query, count and delete.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Weaviate"

    def get_class_name(self, name: str) -> str:
        """
        Returns the Weaviate class name for a collection name.

        Raises:
            InvalidConfigError: If the name cannot be a Weaviate class.
        """
        if not _CLASS_NAME.match(name):
            raise InvalidConfigError(
                f"Collection name '{name}' is not valid for Weaviate: must start with a letter and contain only letters, digits and underscores."
            )
        return name[0].upper() + name[1:]

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/.well-known/ready"

    def _get_endpoint_schema(self, class_name: str | None = None) -> str:
        return f"/v1/schema/{class_name}" if class_name else "/v1/schema"

    def _get_endpoint_object(self, class_name: str, object_id: str) -> str:
        return f"/v1/objects/{class_name}/{object_id}"

    def _get_endpoint_batch(self) -> str:
        return "/v1/batch/objects"

    def _get_endpoint_graphql(self) -> str:
        return "/v1/graphql"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_class_payload(self, class_name: str, distance: DistanceMetric) -> dict:
        properties = {**_IDENTITY_PROPERTIES, **_ITEM_PROPERTIES}
        return {
            "class": class_name,
            "vectorizer": "none",
            "vectorIndexConfig": {"distance": _DISTANCES[distance]},
            "properties": [{"name": key, "dataType": [data_type]} for key, data_type in properties.items()],
        }

    def get_where_filter(self, filter: dict | None, exclude_identity: bool = True) -> dict | None:
        """Translate an equality map into a Weaviate where filter (REST JSON form)."""
        operands = []
        if exclude_identity:
            operands.append({"path": ["id"], "operator": "NotEqual", "valueText": IDENTITY_ID})
        for key, value in (filter or {}).items():
            operands.append({"path": [key], "operator": "Equal", self._value_key(value): value})
        if not operands:
            return None
        if len(operands) == 1:
            return operands[0]
        return {"operator": "And", "operands": operands}

    def _value_key(self, value) -> str:
        if isinstance(value, bool):
            return "valueBoolean"
        if isinstance(value, int):
            return "valueInt"
        if isinstance(value, float):
            return "valueNumber"
        return "valueText"

    def render_graphql_where(self, where: dict) -> str:
        """Render a REST-style where filter in GraphQL argument syntax (unquoted keys and operators)."""
        parts = []
        for key, value in where.items():
            if key == "operator":
                parts.append(f"operator: {value}")
            elif key == "operands":
                parts.append("operands: [" + ", ".join(self.render_graphql_where(op) for op in value) + "]")
            else:
                parts.append(f"{key}: {json.dumps(value)}")
        return "{" + ", ".join(parts) + "}"

    def get_search_query(self, class_name: str, vector: list[float], top_k: int, filter: dict | None) -> str:
        where = self.render_graphql_where(self.get_where_filter(filter))
        fields = " ".join(_ITEM_PROPERTIES.keys())
        return (
            f"{{ Get {{ {class_name}(nearVector: {{vector: {json.dumps(vector)}}}, limit: {top_k}, where: {where}) "
            f"{{ {fields} _additional {{ id distance }} }} }} }}"
        )

    def get_count_query(self, class_name: str, filter: dict | None) -> str:
        where = self.render_graphql_where(self.get_where_filter(filter))
        return f"{{ Aggregate {{ {class_name}(where: {where}) {{ meta {{ count }} }} }} }}"

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_graphql_data(self, raw_response: dict, operation: str, class_name: str) -> list[dict]:
        if raw_response.get("errors"):
            messages = "; ".join(e.get("message", "") for e in raw_response["errors"])
            if "Cannot query field" in messages or "does not exist" in messages:
                raise CollectionNotFoundError(f"Weaviate class '{class_name}' does not exist: {messages}")
            raise StorageError(f"Weaviate {operation} on '{class_name}' failed: {messages}")
        data = (raw_response.get("data") or {}).get(operation) or {}
        if class_name not in data:
            raise StorageError(f"Weaviate {operation} response has no entry for '{class_name}'.")
        return data[class_name] or []

    def extract_matches(self, raw_response: dict, class_name: str) -> list[QueryMatch]:
        matches = []
        for item in self.extract_graphql_data(raw_response, "Get", class_name):
            additional = item.pop("_additional", {}) or {}
            distance = float(additional.get("distance") or 0.0)
            payload = {key: value for key, value in item.items() if value is not None}
            matches.append(QueryMatch(id=additional.get("id", ""), score=1.0 - distance, payload=payload))
        return matches

    ##########################################
    ########### ENGINE OPERATIONS ############
    ##########################################

    async def _do_create_collection(self, name: str, dimensions: int, distance: DistanceMetric, properties: dict) -> None:
        class_name = self.get_class_name(name)
        await self.do_request(method="POST", json=self.get_class_payload(class_name, distance), endpoint=self._get_endpoint_schema())
        identity = {
            "class": class_name,
            "id": IDENTITY_ID,
            "properties": {
                "collection_name": name,
                "collection_size": dimensions,
                "embedding_provider": properties.get("embedding_provider"),
                "embedding_model": properties.get("embedding_model"),
            },
            "vector": [0.0] * dimensions,
        }
        await self.do_request(method="POST", json=identity, endpoint="/v1/objects")

    async def do_existence_check(self, name: str) -> bool:
        response = await self.do_request(
            method="GET", endpoint=self._get_endpoint_schema(self.get_class_name(name)), raise_on_error=False
        )
        if response.status_code == 404:
            return False
        if response.status_code >= 300:
            self._raise_for_status(response, str(response.request.url))
        return True

    async def _do_fetch_collection_info(self, name: str) -> CollectionInfo:
        class_name = self.get_class_name(name)
        schema = self._parse_json(await self.do_request(method="GET", endpoint=self._get_endpoint_schema(class_name)))
        identity = self._parse_json(await self.do_request(method="GET", endpoint=self._get_endpoint_object(class_name, IDENTITY_ID)))
        raw_distance = (schema.get("vectorIndexConfig") or {}).get("distance", "cosine")
        distance = next((k for k, v in _DISTANCES.items() if v == raw_distance), DistanceMetric.COSINE)
        props = identity.get("properties") or {}
        try:
            size = int(props["collection_size"])
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Weaviate class '{class_name}' has no usable identity object: {e}") from e
        return CollectionInfo(
            name=name,
            size=size,
            distance=distance,
            properties={k: props.get(k) for k in ("embedding_provider", "embedding_model")},
        )

    async def _do_drop_collection(self, name: str) -> None:
        await self.do_request(method="DELETE", endpoint=self._get_endpoint_schema(self.get_class_name(name)))

    async def _do_upsert_batch(self, name: str, points: list[VectorPoint]) -> None:
        class_name = self.get_class_name(name)
        objects = [
            {"class": class_name, "id": point.id, "properties": point.payload, "vector": point.vector}
            for point in points
        ]
        response = await self.do_request(method="POST", json={"objects": objects}, endpoint=self._get_endpoint_batch())
        errors = [
            item["result"]["errors"]
            for item in self._parse_json(response) or []
            if (item.get("result") or {}).get("errors")
        ]
        if errors:
            raise StorageError(f"Weaviate rejected {len(errors)} object(s) in '{class_name}': {errors[0]}")

    async def _do_query(self, name: str, vector: list[float], top_k: int, filter: dict | None) -> list[QueryMatch]:
        class_name = self.get_class_name(name)
        response = await self.do_request(
            method="POST",
            json={"query": self.get_search_query(class_name, vector, top_k, filter)},
            endpoint=self._get_endpoint_graphql(),
        )
        return self.extract_matches(self._parse_json(response), class_name)

    async def do_delete_points(self, name: str, ids: list[str]) -> None:
        if not ids:
            return
        class_name = self.get_class_name(name)
        where = {"path": ["id"], "operator": "ContainsAny", "valueTextArray": [i for i in ids if i != IDENTITY_ID]}
        await self.do_request(
            method="DELETE",
            json={"match": {"class": class_name, "where": where}},
            endpoint=self._get_endpoint_batch(),
        )

    async def do_delete_points_by_filter(self, name: str, filter: dict) -> None:
        if not filter:
            raise InvalidConfigError("Refusing to delete with an empty filter.")
        class_name = self.get_class_name(name)
        await self.do_request(
            method="DELETE",
            json={"match": {"class": class_name, "where": self.get_where_filter(filter)}},
            endpoint=self._get_endpoint_batch(),
        )

    async def do_count(self, name: str, filter: dict | None = None) -> int:
        class_name = self.get_class_name(name)
        response = await self.do_request(
            method="POST",
            json={"query": self.get_count_query(class_name, filter)},
            endpoint=self._get_endpoint_graphql(),
        )
        rows = self.extract_graphql_data(self._parse_json(response), "Aggregate", class_name)
        return int(rows[0]["meta"]["count"]) if rows else 0
