import logging
import pymongo

from .settings import get_mongo_uri, get_db_name

# Global cache for the MongoDB client to enable connection pooling across invocations
_CLIENT_CACHE = None

COLL_TEAMS = "teams"
COLL_SQUADS = "squads"
COLL_DPES = "dpes"
COLL_PERFORMANCE = "performance_data"


def get_db_client(**kwargs):
    """
    Returns a PyMongo client using the connection string from settings.
    Uses a global cache to reuse the client across Azure Function invocations.
    """
    global _CLIENT_CACHE

    if _CLIENT_CACHE is not None:
        return _CLIENT_CACHE

    uri = get_mongo_uri()
    kwargs.setdefault("serverSelectionTimeoutMS", 5000)
    try:
        _CLIENT_CACHE = pymongo.MongoClient(uri, **kwargs)
        return _CLIENT_CACHE
    except Exception as e:
        logging.critical(f"Failed to create MongoClient: {e}")
        raise


def get_db():
    """
    Returns the dashboard database object.
    """
    client = get_db_client()
    return client[get_db_name()]


def ping(db) -> dict:
    return db.client.admin.command("ping")
