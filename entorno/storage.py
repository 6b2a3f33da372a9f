"""
Key/value persistence for Entorno.

Each key holds one serialized JSON blob, written wholesale on every change.
Two backends:

- FileStorage: one `<key>.json` file per key in a local data directory
- FirestoreStorage: one document per key in a Firestore collection

There is no locking; two processes writing the same key race and the last
write wins.
"""

import os
from pathlib import Path
from typing import Any, Optional

from entorno.logger import logger


class StorageError(Exception):
    """Raised when a backend cannot be read or written."""


class Storage:
    """Interface shared by the persistence backends."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError


class FileStorage(Storage):
    """Stores each key as a UTF-8 file inside `directory`."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Cannot remove {path}: {e}") from e


class FirestoreStorage(Storage):
    """
    Stores each key as `{collection}/{key}` with the blob in a `value` field.

    Pass an existing Firestore client, or call `initialize()` to create one from
    a service account file (FIREBASE_CREDENTIALS_PATH).
    """

    def __init__(self, client: Any = None, collection: str = "storage"):
        self.db = client
        self.collection = collection

    def initialize(self, credentials_path: Optional[str] = None) -> bool:
        """Connect to Firestore. Returns False when credentials are unusable."""
        if self.db is not None:
            return True

        creds_path = credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH")
        if not creds_path:
            logger.warning("[DB] FIREBASE_CREDENTIALS_PATH not set in .env file")
            return False
        if not os.path.exists(creds_path):
            logger.error(f"[DB] Credentials file not found at: {creds_path}")
            return False

        import firebase_admin
        from firebase_admin import credentials, firestore

        try:
            if not firebase_admin._apps:
                firebase_admin.initialize_app(credentials.Certificate(creds_path))
            self.db = firestore.client()
        except Exception as e:
            logger.error(f"[DB] Failed to initialize Firebase: {e}")
            return False

        logger.success("[DB] Firebase Firestore connected")
        return True

    def _doc(self, key: str):
        if self.db is None:
            raise StorageError("Firestore is not initialized")
        return self.db.collection(self.collection).document(key)

    def get_item(self, key: str) -> Optional[str]:
        try:
            doc = self._doc(key).get()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Firestore read failed for {key}: {e}") from e
        if not doc.exists:
            return None
        value = (doc.to_dict() or {}).get("value")
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        try:
            self._doc(key).set({"value": value})
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Firestore write failed for {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._doc(key).delete()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Firestore delete failed for {key}: {e}") from e
