import os
from pathlib import Path
from typing import Generator

import dotenv
import pytest

from disco_storage.config import StorageConfig
from disco_storage.metadata.catalog import InMemoryCatalog
from tests.unit.mocks.fake_channel import FakeChannel


@pytest.fixture(scope="session", autouse=True)
def _load_test_env() -> Generator[None, None, None]:
    """Load test environment variables from the defaults file."""
    project_root = Path(__file__).parents[2]
    dotenv.load_dotenv(project_root / ".env.defaults", override=True)
    os.environ["ENVIRONMENT"] = "test"
    yield


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(channel_id=42, max_chunk_size=4, max_attachments_per_message=1, max_message_size=64)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()
