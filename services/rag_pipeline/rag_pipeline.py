"""Pipeline runner entry point.

Ingests every supported file of INGEST_DIR into the collection
INGEST_COLLECTION, creating the collection on first use, and extracts the
documents' images in the background.

Usage:
    python -m services.rag_pipeline.rag_pipeline
"""

import asyncio
import hashlib
import os

from services.batch.BatchEmbeddingService import BatchEmbeddingService
from services.collections.CollectionService import CollectionService
from services.documents.DocumentService import DocumentService
from services.embedding.EmbeddingService import EmbeddingService
from services.images.ImagePipeline import ImagePipeline
from shared.cache.CacheStoreManager import CacheStoreManager
from shared.cache.EmbeddingCache import EmbeddingCache
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.vector.VectorClientManager import VectorClientManager
from shared.db.Database import Database
from shared.db.EntityStore import EntityStore
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.logging.logging_setup import setup_logging
from shared.models.errors import ConflictError, PipelineError
from shared.parsers.ParserManager import ParserManager
from shared.storage.filesystem.BlobStoreFilesystem import BlobStoreFilesystem


async def _read_file(path: str) -> bytes:
    def read() -> bytes:
        with open(path, "rb") as f:
            return f.read()
    return await asyncio.to_thread(read)


async def main() -> None:
    """Boot all components and ingest INGEST_DIR."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    ingest_dir = config.get_string_val("INGEST_DIR")
    collection_name = config.get_string_val("INGEST_COLLECTION")

    database = Database(helper_config=config)
    entity_store = EntityStore(helper_config=config, database=database)
    blob_store = BlobStoreFilesystem(helper_config=config)
    parser_manager = ParserManager(helper_config=config)
    embed_manager = EmbedClientManager(helper_config=config)
    vector_manager = VectorClientManager(helper_config=config)
    retry = HelperRetry(helper_config=config)

    embed_clients = embed_manager.get_clients()
    vector_clients = vector_manager.get_clients()
    embedder = config.get_string_val("INGEST_EMBEDDER", default=embed_clients[0].get_engine_name())
    provider = config.get_string_val("INGEST_VECTOR_DB", default=vector_clients[0].get_engine_name())

    image_pipeline: ImagePipeline | None = None
    try:
        await database.boot()

        # both sides are required for ingestion, abort if either one is unreachable
        for client in [embed_manager.get_client(embedder), vector_manager.get_client(provider)]:
            try:
                await client.boot()
                await client.do_healthcheck()
            except PipelineError as e:
                logger.error("Error booting %s client %s: %s. Aborting.", client.get_client_type(), client.get_engine_name(), e)
                return

        cache = EmbeddingCache(helper_config=config, store=CacheStoreManager(config, entity_store).get_store())
        embedding_service = EmbeddingService(
            helper_config=config,
            entity_store=entity_store,
            blob_store=blob_store,
            parser_manager=parser_manager,
            embed_manager=embed_manager,
            vector_manager=vector_manager,
            cache=cache,
            retry=retry,
        )
        image_pipeline = ImagePipeline(config, entity_store, blob_store, parser_manager)
        document_service = DocumentService(config, entity_store, blob_store, parser_manager, embedding_service, image_pipeline)
        collection_service = CollectionService(config, entity_store, embed_manager, vector_manager, retry)
        batch_service = BatchEmbeddingService(config, embedding_service)

        collection = await entity_store.get_collection_by_name(collection_name, provider)
        if collection is None:
            collection = await collection_service.create(collection_name, embedder=embedder, provider=provider)

        await image_pipeline.start()

        supported = set(parser_manager.get_supported_formats())
        document_ids = []
        for file_name in sorted(os.listdir(ingest_dir)):
            path = os.path.join(ingest_dir, file_name)
            ext = os.path.splitext(file_name)[1].lower().lstrip(".")
            if not os.path.isfile(path) or ext not in supported:
                logger.debug("Skipping %s", file_name)
                continue
            data = await _read_file(path)
            try:
                document = await document_service.upload(file_name, data, src="fs")
            except ConflictError:
                document = await entity_store.get_document_by_hash(hashlib.sha256(data).hexdigest())
                logger.info("'%s' is already stored as '%s'", file_name, document.name)
            document_ids.append(document.id)

        logger.info("Embedding %d document(s) into '%s'...", len(document_ids), collection.name)
        async for result in batch_service.run(collection.id, add=document_ids):
            if result.ok:
                logger.info(
                    "Document %s: %d vector(s), cache=%s",
                    result.document_id, result.result.total_vectors, result.result.cache, color="green",
                )
            else:
                logger.error("Document %s failed: %s", result.document_id, result.error)
    finally:
        if image_pipeline is not None:
            await image_pipeline.stop(drain=True)
        for client in embed_clients:
            await client.close()
        for client in vector_clients:
            await client.close()
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
