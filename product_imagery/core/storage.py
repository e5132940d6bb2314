"""
Result Store - Storage Abstraction Layer

Provides a clean interface for persisting processed images. LocalStorage
writes each artifact exactly once under a folder that is served statically
(`/processed/...`, `/uploads/...`).
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from product_imagery.core.config import settings
from product_imagery.core.exceptions import StorageError
from product_imagery.core.logging import get_logger
from product_imagery.core.metrics import record_artifact_written
from product_imagery.modules.imagery.models import ProcessedArtifact

logger = get_logger(__name__)


class IStorage(ABC):
    """Interface for result store operations."""

    @abstractmethod
    async def save(self, file_data: bytes, filename: str, folder: str) -> str:
        """
        Persist a file that must not exist yet.

        Args:
            file_data: Raw bytes of the file
            filename: Unique target filename
            folder: Subfolder the file is served from

        Returns:
            Storage key that can be used with get_url()
        """
        pass

    @abstractmethod
    def get_url(self, storage_key: str) -> str:
        """Public path for a stored file."""
        pass

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """Delete a file; returns False instead of raising."""
        pass

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a file exists in storage."""
        pass

    async def save_artifact(
        self,
        file_data: bytes,
        filename: str,
        operation: str,
        folder: Optional[str] = None,
        format: Optional[str] = None
    ) -> ProcessedArtifact:
        """Persist a processed image and describe it for the response."""
        storage_key = await self.save(file_data, filename, folder or settings.PROCESSED_FOLDER)
        record_artifact_written(operation)
        return ProcessedArtifact(
            storage_key=storage_key,
            filename=filename,
            path=self.get_url(storage_key),
            size=len(file_data),
            format=format
        )


class LocalStorage(IStorage):
    """Filesystem-backed, write-once result store."""

    def __init__(self, base_path: str = "./data"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def folder_path(self, folder: str) -> Path:
        path = self.base_path / folder
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def save(self, file_data: bytes, filename: str, folder: str) -> str:
        if Path(filename).name != filename:
            raise StorageError(f"Invalid artifact filename: {filename}")

        file_path = self.folder_path(folder) / filename

        try:
            # "x" refuses to overwrite: artifacts are immutable once written
            with open(file_path, "xb") as f:
                f.write(file_data)
        except FileExistsError as e:
            raise StorageError(
                f"Artifact already exists: {folder}/{filename}",
                details={"storage_key": f"{folder}/{filename}"}
            ) from e
        except OSError as e:
            logger.error("artifact_write_failed", path=str(file_path), error=str(e))
            try:
                file_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(
                    "artifact_cleanup_failed",
                    path=str(file_path),
                    error=str(cleanup_error)
                )
            raise StorageError(f"Could not write artifact: {e}") from e

        logger.info("artifact_written", storage_key=f"{folder}/{filename}", size=len(file_data))
        return f"{folder}/{filename}"

    def get_url(self, storage_key: str) -> str:
        return f"/{storage_key}"

    async def delete(self, storage_key: str) -> bool:
        file_path = self.base_path / storage_key
        try:
            if file_path.exists():
                file_path.unlink()
                return True
            return False
        except OSError as e:
            logger.warning("artifact_delete_failed", storage_key=storage_key, error=str(e))
            return False

    async def exists(self, storage_key: str) -> bool:
        return (self.base_path / storage_key).exists()


class StorageFactory:
    """Factory for the process-wide storage instance."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        if cls._instance is None:
            cls._instance = LocalStorage(base_path=settings.LOCAL_STORAGE_PATH)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
