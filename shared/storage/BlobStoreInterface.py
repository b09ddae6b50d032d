from abc import ABC, abstractmethod

from shared.helper.HelperConfig import HelperConfig


class BlobStoreInterface(ABC):
    """
    Binary storage for document bytes and extracted images.

    ``put`` returns an opaque reference that is later passed to ``get`` and
    ``delete``. References are what the entity store persists.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()

    @abstractmethod
    async def put(self, key: str, data: bytes) -> str:
        """
        Raises:
            BlobError: If the data cannot be written.
        """
        pass

    @abstractmethod
    async def get(self, ref: str) -> bytes:
        """
        Raises:
            NotFoundError: If nothing is stored under ``ref``.
            BlobError: If the data cannot be read.
        """
        pass

    @abstractmethod
    async def delete(self, ref: str) -> None:
        """
        Deletes the blob. Deleting a missing blob is not an error.

        Raises:
            BlobError: If the blob exists but cannot be removed.
        """
        pass
