"""
Model Loader Tests

Covers artifact fetching for every supported location, TorchScript
deserialization and the readiness state machine. Cloud clients and HTTP are
mocked.
"""

import io
import pickle
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from cancer_api.errors import LoadError, NotReadyError
from cancer_api.model_loader import LoadedModel, ModelLoader, ModelManager, ModelStatus
from cancer_api.storage import (
    GCSArtifactSource,
    HTTPArtifactSource,
    LocalArtifactSource,
    S3ArtifactSource,
    fetch_artifact,
    get_artifact_source,
    split_bucket_path,
)


# =========================================================================
# Location Parsing
# =========================================================================

@pytest.mark.parametrize("location,expected", [
    ("gs://bucket/models/model.pt", GCSArtifactSource),
    ("s3://bucket/model.pt", S3ArtifactSource),
    ("https://example.com/model.pt", HTTPArtifactSource),
    ("http://example.com/model.pt", HTTPArtifactSource),
    ("file:///tmp/model.pt", LocalArtifactSource),
    ("/tmp/model.pt", LocalArtifactSource),
    ("models/model.pt", LocalArtifactSource),
])
def test_artifact_source_selection(location, expected):
    assert isinstance(get_artifact_source(location), expected)


def test_unsupported_scheme_fails():
    with pytest.raises(LoadError):
        get_artifact_source("ftp://host/model.pt")


def test_split_bucket_path():
    assert split_bucket_path("gs://bucket/a/b/model.pt") == ("bucket", "a/b/model.pt")


def test_split_bucket_path_requires_object():
    with pytest.raises(LoadError):
        split_bucket_path("gs://bucket")


# =========================================================================
# Local Files
# =========================================================================

def test_fetch_local_path(model_path, model_bytes):
    assert fetch_artifact(str(model_path)) == model_bytes


def test_fetch_file_url(model_path, model_bytes):
    assert fetch_artifact(model_path.as_uri()) == model_bytes


def test_missing_local_file_is_not_found(tmp_path):
    with pytest.raises(LoadError) as exc_info:
        fetch_artifact(str(tmp_path / "missing.pt"))
    assert exc_info.value.not_found is True


# =========================================================================
# Google Cloud Storage
# =========================================================================

@patch("cancer_api.storage.gcs_storage.Client")
def test_gcs_fetch_checks_existence_then_downloads(client_cls, model_bytes):
    blob = client_cls.return_value.bucket.return_value.blob.return_value
    blob.exists.return_value = True
    blob.download_as_bytes.return_value = model_bytes

    data = fetch_artifact("gs://models-bucket/submissions-model/model.pt")

    assert data == model_bytes
    client_cls.return_value.bucket.assert_called_once_with("models-bucket")
    client_cls.return_value.bucket.return_value.blob.assert_called_once_with("submissions-model/model.pt")
    blob.exists.assert_called_once()
    client_cls.return_value.close.assert_called_once()


@patch("cancer_api.storage.gcs_storage.Client")
def test_gcs_missing_object_is_not_found(client_cls):
    blob = client_cls.return_value.bucket.return_value.blob.return_value
    blob.exists.return_value = False

    with pytest.raises(LoadError) as exc_info:
        fetch_artifact("gs://models-bucket/model.pt")

    assert exc_info.value.not_found is True
    blob.download_as_bytes.assert_not_called()
    client_cls.return_value.close.assert_called_once()


# =========================================================================
# S3 / MinIO
# =========================================================================

def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


@patch("cancer_api.storage.boto3.client")
def test_s3_fetch_downloads_object(boto_client, model_bytes):
    s3 = boto_client.return_value
    s3.get_object.return_value = {"Body": io.BytesIO(model_bytes)}

    data = fetch_artifact("s3://models/model.pt", endpoint_url="http://minio:9000")

    assert data == model_bytes
    boto_client.assert_called_once_with("s3", endpoint_url="http://minio:9000")
    s3.head_object.assert_called_once_with(Bucket="models", Key="model.pt")
    s3.close.assert_called_once()


@patch("cancer_api.storage.boto3.client")
def test_s3_missing_object_is_not_found(boto_client):
    boto_client.return_value.head_object.side_effect = _client_error("404")

    with pytest.raises(LoadError) as exc_info:
        fetch_artifact("s3://models/model.pt")

    assert exc_info.value.not_found is True
    boto_client.return_value.close.assert_called_once()


@patch("cancer_api.storage.boto3.client")
def test_s3_access_denied_is_load_error(boto_client):
    boto_client.return_value.head_object.side_effect = _client_error("403")

    with pytest.raises(LoadError) as exc_info:
        fetch_artifact("s3://models/model.pt")

    assert exc_info.value.not_found is False


# =========================================================================
# HTTP
# =========================================================================

def _http_response(status_code, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


@patch("cancer_api.storage.requests.get")
def test_http_fetch_downloads_content(mock_get, model_bytes):
    mock_get.return_value.__enter__.return_value = _http_response(200, model_bytes)

    data = fetch_artifact("https://example.com/model.pt", timeout=5)

    assert data == model_bytes
    mock_get.assert_called_once_with("https://example.com/model.pt", timeout=5, stream=True)
    mock_get.return_value.__exit__.assert_called_once()


@patch("cancer_api.storage.requests.get")
def test_http_404_is_not_found(mock_get):
    mock_get.return_value.__enter__.return_value = _http_response(404)

    with pytest.raises(LoadError) as exc_info:
        fetch_artifact("https://example.com/model.pt")
    assert exc_info.value.not_found is True


@patch("cancer_api.storage.requests.get")
def test_http_server_error_is_load_error(mock_get):
    mock_get.return_value.__enter__.return_value = _http_response(500)

    with pytest.raises(LoadError) as exc_info:
        fetch_artifact("https://example.com/model.pt")
    assert exc_info.value.not_found is False


@patch("cancer_api.storage.requests.get")
def test_http_connection_error_is_load_error(mock_get):
    mock_get.side_effect = requests.ConnectionError("unreachable")

    with pytest.raises(LoadError):
        fetch_artifact("https://example.com/model.pt")


# =========================================================================
# Deserialization
# =========================================================================

def test_loader_builds_eval_module(model_path):
    loader = ModelLoader(str(model_path), device="cpu")
    model = loader.load()

    assert isinstance(model, LoadedModel)
    assert model.location == str(model_path)
    assert model.size_bytes > 0
    assert model.module.training is False


def test_loader_rejects_garbage_bytes(tmp_path):
    path = tmp_path / "model.pt"
    path.write_bytes(b"definitely not torchscript")

    with pytest.raises(LoadError):
        ModelLoader(str(path)).load()


def test_loader_rejects_empty_artifact(tmp_path):
    path = tmp_path / "model.pt"
    path.write_bytes(b"")

    with pytest.raises(LoadError):
        ModelLoader(str(path)).load()


def test_loader_wraps_unpickling_error(model_path):
    with patch("cancer_api.model_loader.torch.jit.load",
               side_effect=pickle.UnpicklingError("bad pickle")):
        with pytest.raises(LoadError) as exc_info:
            ModelLoader(str(model_path)).load()

    assert isinstance(exc_info.value.__cause__, pickle.UnpicklingError)


@patch("cancer_api.storage.gcs_storage.Client")
def test_loader_wraps_raw_transport_error(client_cls):
    blob = client_cls.return_value.bucket.return_value.blob.return_value
    blob.exists.return_value = True
    blob.download_as_bytes.side_effect = requests.ConnectionError("connection reset")

    with pytest.raises(LoadError) as exc_info:
        ModelLoader("gs://models-bucket/model.pt").load()

    assert exc_info.value.not_found is False
    client_cls.return_value.close.assert_called_once()


def test_loader_falls_back_to_cpu_without_cuda(model_path):
    with patch("cancer_api.model_loader.torch.cuda.is_available", return_value=False):
        loader = ModelLoader(str(model_path), device="cuda")
    assert loader.device == "cpu"


# =========================================================================
# ModelManager
# =========================================================================

def test_manager_starts_not_ready(model_manager):
    assert model_manager.status == ModelStatus.NOT_READY
    assert model_manager.is_ready is False
    with pytest.raises(NotReadyError):
        model_manager.require_model()


def test_manager_load_publishes_model(model_manager):
    model = model_manager.load()

    assert model_manager.status == ModelStatus.READY
    assert model_manager.require_model() is model


def test_manager_failed_load_is_failed(tmp_path):
    manager = ModelManager(ModelLoader(str(tmp_path / "missing.pt")))

    with pytest.raises(LoadError):
        manager.load()

    assert manager.status == ModelStatus.FAILED
    assert "missing.pt" in manager.current().error
    with pytest.raises(NotReadyError):
        manager.require_model()


def test_manager_reports_loading_while_in_flight(model_path):
    loader = ModelLoader(str(model_path))
    manager = ModelManager(loader)
    seen = []

    real_load = loader.load

    def observing_load():
        seen.append(manager.status)
        return real_load()

    loader.load = observing_load
    manager.load()

    assert seen == [ModelStatus.LOADING]
    assert manager.status == ModelStatus.READY


def test_manager_reload_replaces_model(loaded_manager):
    first = loaded_manager.require_model()
    second = loaded_manager.load()

    assert second is not first
    assert loaded_manager.require_model() is second


def test_manager_failed_reload_keeps_previous_model(loaded_manager):
    first = loaded_manager.require_model()
    loaded_manager.loader.load = MagicMock(side_effect=LoadError("bucket gone"))

    with pytest.raises(LoadError):
        loaded_manager.load()

    assert loaded_manager.status == ModelStatus.READY
    assert loaded_manager.require_model() is first


def test_manager_background_load(model_manager):
    model_manager.load_in_background()
    assert model_manager.wait(timeout=30) is True
    assert model_manager.status == ModelStatus.READY


def test_manager_background_load_failure_stays_not_ready(tmp_path):
    manager = ModelManager(ModelLoader(str(tmp_path / "missing.pt")))
    manager.load_in_background()

    assert manager.wait(timeout=30) is False
    assert manager.status == ModelStatus.FAILED


def test_manager_unexpected_error_becomes_failed(model_manager):
    model_manager.loader.load = MagicMock(side_effect=TypeError("boom"))

    with pytest.raises(LoadError) as exc_info:
        model_manager.load()

    assert isinstance(exc_info.value.__cause__, TypeError)
    assert model_manager.status == ModelStatus.FAILED
    assert "boom" in model_manager.current().error


def test_manager_background_unexpected_error_becomes_failed(model_manager):
    model_manager.loader.load = MagicMock(side_effect=TypeError("boom"))

    model_manager.load_in_background()

    assert model_manager.wait(timeout=5) is False
    assert model_manager._thread.is_alive() is False
    assert model_manager.status == ModelStatus.FAILED


def test_manager_unexpected_reload_error_keeps_previous_model(loaded_manager):
    first = loaded_manager.require_model()
    loaded_manager.loader.load = MagicMock(side_effect=KeyError("boom"))

    with pytest.raises(LoadError):
        loaded_manager.load()

    assert loaded_manager.status == ModelStatus.READY
    assert loaded_manager.require_model() is first


def test_manager_info(loaded_manager, model_path):
    info = loaded_manager.info()

    assert info["status"] == "ready"
    assert info["loaded"] is True
    assert info["location"] == str(model_path)
    assert info["framework"] == "pytorch"
    assert info["input_shape"] == [1, 224, 224, 3]
    assert "loaded_at" in info
