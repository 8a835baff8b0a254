"""
Pytest fixtures for testing.
"""

import io
import os

import numpy as np
import pytest
import torch
from PIL import Image

# Set test environment variables before importing the package
os.environ.setdefault("LOG_LEVEL", "ERROR")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("RECORD_STORE", "memory")

from cancer_api.app import create_app
from cancer_api.config import config
from cancer_api.model_loader import ModelLoader, ModelManager
from cancer_api.records import InMemoryRecordStore


class MeanIntensityModel(torch.nn.Module):
    """Scores an image by its mean pixel value, so white is 1.0 and black is 0.0."""

    def forward(self, x):
        return x.mean(dim=(1, 2, 3)).unsqueeze(1)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")


def encode_image(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture(scope="session")
def model_bytes():
    """
    Fixture providing a serialized TorchScript model.

    Returns:
        bytes: torch.jit.save output of MeanIntensityModel
    """
    traced = torch.jit.trace(MeanIntensityModel().eval(), torch.zeros(1, 224, 224, 3))
    buffer = io.BytesIO()
    torch.jit.save(traced, buffer)
    return buffer.getvalue()


@pytest.fixture
def model_path(tmp_path, model_bytes):
    """Fixture providing the serialized model written to disk."""
    path = tmp_path / "model.pt"
    path.write_bytes(model_bytes)
    return path


@pytest.fixture
def model_manager(model_path):
    """Fixture providing an unloaded model manager."""
    return ModelManager(ModelLoader(str(model_path), device="cpu"))


@pytest.fixture
def loaded_manager(model_manager):
    """Fixture providing a model manager with the model loaded."""
    model_manager.load()
    return model_manager


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def app(loaded_manager, record_store):
    app = create_app(config, model_manager=loaded_manager, record_store=record_store)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    """
    Create test client with model initialized.

    Returns:
        Test client for making requests
    """
    with app.test_client() as client:
        yield client


@pytest.fixture
def unready_client(model_manager, record_store):
    """Test client whose model has not been loaded."""
    app = create_app(config, model_manager=model_manager, record_store=record_store)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def white_png():
    """PNG of a white image, scored 1.0 by MeanIntensityModel."""
    return encode_image(Image.new("RGB", (64, 64), color=(255, 255, 255)))


@pytest.fixture
def red_png():
    """PNG of a red image, scored 1/3 by MeanIntensityModel."""
    return encode_image(Image.new("RGB", (300, 200), color=(255, 0, 0)))


@pytest.fixture
def sample_image_bytes():
    """JPEG bytes of a 224x224 RGB image."""
    return encode_image(Image.new("RGB", (224, 224), color=(73, 109, 137)), fmt="JPEG")


@pytest.fixture
def rgba_array():
    """Random RGBA pixels with varying alpha."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, size=(50, 70, 4), dtype=np.uint8)
