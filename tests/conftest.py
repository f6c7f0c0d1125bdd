"""
Pytest configuration and fixtures for testing facetag.
"""

import os
from pathlib import Path

# Set up test environment variables BEFORE importing from facetag
# NEVER use the production FACETAG_DIR from environment
test_dir = Path(__file__).parent
test_data_dir = test_dir.parent.parent / "test_artifacts" / "facetag"
test_data_dir.mkdir(parents=True, exist_ok=True)
os.environ["FACETAG_DIR"] = str(test_data_dir)

import pytest
from fakes import FakeDelivery, FakeRecognition, FakeStorage, Seeder

from facetag.db_service import DBService
from facetag.db_service import database
from facetag.db_service.models import Base


@pytest.fixture
def db_engine():
    """Fresh in-memory database bound to the global session factory."""
    database.close_db()
    database.init_db("sqlite://")

    yield database.engine

    Base.metadata.drop_all(bind=database.engine)
    database.close_db()


@pytest.fixture
def db_service(db_engine):
    return DBService()


@pytest.fixture
def seed(db_engine):
    return Seeder()


@pytest.fixture
def recognition():
    return FakeRecognition()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def storage():
    return FakeStorage()
