"""
Pytest configuration and fixtures.

MongoDB is replaced by an in-memory mongomock client dropped into the cached
client slot, so nothing here ever touches a real database.
"""

import json
import os
import sys

import azure.functions as func
import mongomock
import pytest
import requests

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from insight_utils import db_utils  # noqa: E402
from insight_utils.reconcile import EntityReconciler  # noqa: E402

TEST_DB_NAME = "devops_insight_test"


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    monkeypatch.setenv("INSIGHT_DB_NAME", TEST_DB_NAME)
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.delenv("ALLOW_COLLECTION_CLEAR", raising=False)


@pytest.fixture
def mongo_client(monkeypatch):
    client = mongomock.MongoClient()
    monkeypatch.setattr(db_utils, "_CLIENT_CACHE", client)
    yield client
    client.close()


@pytest.fixture
def db(mongo_client):
    return mongo_client[TEST_DB_NAME]


@pytest.fixture
def rec(db):
    return EntityReconciler(db)


@pytest.fixture
def make_request():
    """Build a real azure.functions.HttpRequest."""

    def _make(method, url, body=None, route_params=None, params=None):
        raw = b""
        if body is not None:
            raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        return func.HttpRequest(
            method=method,
            url=url,
            body=raw,
            headers={"Content-Type": "application/json"},
            route_params=route_params or {},
            params=params or {},
        )

    return _make


def read_json(resp):
    return json.loads(resp.get_body().decode("utf-8"))


def make_response(status, body=b""):
    """A requests.Response carrying ``body`` (dict/list encoded as JSON)."""
    resp = requests.Response()
    resp.status_code = status
    resp.encoding = "utf-8"
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
    elif isinstance(body, str):
        body = body.encode("utf-8")
    resp._content = body
    return resp
