"""MongoDB access for the CuraMind API.

The connection is opened once at startup and kept on ``app.state``; route
handlers receive it through the ``get_db`` dependency.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database


def connect(uri: str, name: str) -> Tuple[MongoClient, Database]:
    client = MongoClient(uri)
    db = client[name]
    init_indexes(db)
    return client, db


def init_indexes(db: Database) -> None:
    """Email is unique per collection."""
    db["doctor"].create_index([("email", ASCENDING)], unique=True)
    db["patient"].create_index([("email", ASCENDING)], unique=True)


def get_db(request: Request) -> Database:
    return request.app.state.db


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    return list(db[collection_name].find(filter_dict or {}))
