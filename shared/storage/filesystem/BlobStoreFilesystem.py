import asyncio
import os

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BlobError, NotFoundError
from shared.storage.BlobStoreInterface import BlobStoreInterface


class BlobStoreFilesystem(BlobStoreInterface):
    """Stores blobs as files below BLOB_ROOT (default {ROOT_DIR}/data/blobs). References are relative paths."""

    def __init__(self, helper_config: HelperConfig, root: str | None = None):
        super().__init__(helper_config)
        default_root = os.path.join(helper_config.get_root_dir(), "data", "blobs")
        self.root = os.path.abspath(root or helper_config.get_string_val("BLOB_ROOT", default=default_root))

    def _resolve(self, ref: str) -> str:
        path = os.path.abspath(os.path.join(self.root, ref))
        if os.path.commonpath([self.root, path]) != self.root or path == self.root:
            raise BlobError(f"Blob reference '{ref}' escapes the blob root.", details={"ref": ref})
        return path

    def _write(self, path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

    def _read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    async def put(self, key: str, data: bytes) -> str:
        ref = key.replace("\\", "/").lstrip("/")
        path = self._resolve(ref)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise BlobError(f"Failed to write blob '{ref}': {e}", details={"ref": ref}) from e
        self.logging.debug("Stored blob %s (%d bytes)", ref, len(data))
        return ref

    async def get(self, ref: str) -> bytes:
        path = self._resolve(ref)
        try:
            return await asyncio.to_thread(self._read, path)
        except FileNotFoundError as e:
            raise NotFoundError(f"Blob '{ref}' not found.", details={"ref": ref}) from e
        except OSError as e:
            raise BlobError(f"Failed to read blob '{ref}': {e}", details={"ref": ref}) from e

    async def delete(self, ref: str) -> None:
        path = self._resolve(ref)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            self.logging.debug("Blob %s already absent", ref)
        except OSError as e:
            raise BlobError(f"Failed to delete blob '{ref}': {e}", details={"ref": ref}) from e
