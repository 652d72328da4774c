"""
MongoDB access shared by the API.

``db`` is the application database handle. ``MongoClient`` connects lazily, so
importing this module does not require a running server. Datetimes come back
timezone-aware (UTC) so stored and freshly created timestamps serialize alike.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Union

from pydantic import BaseModel
from pymongo import MongoClient

import config

client = MongoClient(config.database_url(), tz_aware=True)
db = client[config.database_name()]


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude={"id"})
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    target = database if database is not None else db
    doc = _as_dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)
