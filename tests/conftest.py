import asyncio

import pytest
from fastapi.testclient import TestClient

from toolshed import config
from toolshed.blob_store import LocalBlobStore
from toolshed.gateway import DraftToolFields
from toolshed.store import EntityStore
from toolshed.usecases.inventory import InventoryService


class FakeGateway:
    """Stands in for the remote extractor; returns ``draft`` or raises ``error``."""

    def __init__(self, draft=None, error=None, delay=0.0, configured=True):
        self.draft = draft
        self.error = error
        self.delay = delay
        self._configured = configured
        self.calls = 0

    @property
    def configured(self):
        return self._configured

    @property
    def model_name(self):
        return "fake-model"

    async def extract(self, image, mime_type="image/jpeg"):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.draft or DraftToolFields(name="Drill", category="전동공구", confidence=0.9)

    async def aclose(self):
        pass


@pytest.fixture
def store(tmp_path):
    s = EntityStore(tmp_path / "data", sample_path=None)
    s.load()
    return s


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "images", tmp_path / "temp_images")


@pytest.fixture
def inventory(store, blobs):
    return InventoryService(store, blobs)


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(config, "IMAGES_DIR", str(tmp_path / "images"))
    monkeypatch.setattr(config, "TEMP_IMAGES_DIR", str(tmp_path / "temp_images"))
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "")

    from toolshed.main import app

    with TestClient(app) as c:
        yield c



@pytest.fixture
def fake_gateway():
    return FakeGateway
