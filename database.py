"""
MongoDB access for CityGuardian.

One `Database` is constructed per process and handed to request handlers
through a FastAPI dependency. The client is created on first use.
Collection name = lowercase model name ("user", "complaint").
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from logger import get_logger

log = get_logger("database")


class Database:
    def __init__(self, url: str, name: str, client: Optional[MongoClient] = None):
        self.url = url
        self.name = name
        self._client = client
        self._db = None

    @property
    def db(self):
        if self._db is None:
            if self._client is None:
                log.info("Connecting to MongoDB database '%s'", self.name)
                self._client = MongoClient(self.url, serverSelectionTimeoutMS=5000)
            self._db = self._client[self.name]
            self._ensure_indexes()
        return self._db

    def _ensure_indexes(self):
        self._db["user"].create_index([("email", ASCENDING)], unique=True)
        self._db["complaint"].create_index([("author_id", ASCENDING)])
        self._db["complaint"].create_index([("status", ASCENDING)])
        self._db["complaint"].create_index([("created_at", DESCENDING)])

    def collection(self, name: str):
        return self.db[name]

    def __getitem__(self, name: str):
        return self.collection(name)

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
        """Insert a document, stamping created_at/updated_at. Returns the new id."""
        if isinstance(data, BaseModel):
            doc = data.model_dump()
        else:
            doc = dict(data)
        now = datetime.now(timezone.utc)
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        result = self.collection(collection_name).insert_one(doc)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                      limit: Optional[int] = None, sort=None, projection=None) -> List[Dict[str, Any]]:
        cursor = self.collection(collection_name).find(filter_dict or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def ping(self) -> bool:
        self.db.command("ping")
        return True

    def close(self):
        if self._client is not None:
            self._client.close()
        self._client = None
        self._db = None
