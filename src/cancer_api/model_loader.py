"""
Model Loader Module

This module handles fetching the serialized classifier, deserializing it
into an executable TorchScript module and publishing it to request handlers.
"""

import io
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import torch

from .errors import LoadError, NotReadyError
from .logger import get_logger
from .preprocessing import IMAGE_SIZE
from .storage import fetch_artifact

logger = get_logger(__name__)


class ModelStatus(str, Enum):
    NOT_READY = 'not_ready'
    LOADING = 'loading'
    READY = 'ready'
    FAILED = 'failed'


@dataclass(frozen=True)
class LoadedModel:
    """An executable model plus where it came from. Never mutated after load."""
    module: torch.jit.ScriptModule
    location: str
    device: str
    size_bytes: int
    loaded_at: str


@dataclass(frozen=True)
class ModelState:
    """Snapshot published to readers in a single assignment."""
    status: ModelStatus
    model: Optional[LoadedModel] = None
    error: Optional[str] = None


class ModelLoader:
    """
    Fetches and deserializes the classifier.

    Example:
        >>> loader = ModelLoader('gs://bucket/models/model.pt')
        >>> model = loader.load()
        >>> model.location
        'gs://bucket/models/model.pt'
    """

    def __init__(self,
                 location: str,
                 device: str = 'cpu',
                 timeout: int = 30,
                 endpoint_url: Optional[str] = None):
        self.location = location
        self.device = device
        self.timeout = timeout
        self.endpoint_url = endpoint_url

        if self.device == 'cuda' and not torch.cuda.is_available():
            logger.warning("CUDA requested but not available. Falling back to CPU.")
            self.device = 'cpu'

    def load(self) -> LoadedModel:
        """
        Fetch the artifact and build an in-memory predictor.

        Raises:
            LoadError: If retrieval or deserialization fails
        """
        try:
            data = fetch_artifact(
                self.location,
                timeout=self.timeout,
                endpoint_url=self.endpoint_url,
            )
        except LoadError:
            raise
        except Exception as e:
            raise LoadError(f"Could not fetch model from {self.location}: {e}") from e
        return self.deserialize(data)

    def deserialize(self, data: bytes) -> LoadedModel:
        """Turn TorchScript bytes into an eval-mode module on the target device."""
        if not data:
            raise LoadError(f"Model artifact at {self.location} is empty")

        try:
            module = torch.jit.load(io.BytesIO(data), map_location=self.device)
            module.eval()
        except Exception as e:
            raise LoadError(f"Could not deserialize model from {self.location}: {e}") from e

        return LoadedModel(
            module=module,
            location=self.location,
            device=self.device,
            size_bytes=len(data),
            loaded_at=datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        )

    def __repr__(self) -> str:
        return f"ModelLoader(location='{self.location}', device='{self.device}')"


class ModelManager:
    """
    Process-wide owner of the loaded model and its readiness state.

    Loads are serialized by a writer lock; readers call ``current()`` or
    ``require_model()`` without locking and always get a complete snapshot.
    """

    def __init__(self, loader: ModelLoader):
        self.loader = loader
        self._state = ModelState(status=ModelStatus.NOT_READY)
        self._write_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def status(self) -> ModelStatus:
        return self._state.status

    @property
    def is_ready(self) -> bool:
        return self._state.status == ModelStatus.READY

    def current(self) -> ModelState:
        return self._state

    def require_model(self) -> LoadedModel:
        """
        Return the published model.

        Raises:
            NotReadyError: If no model has been loaded yet
        """
        state = self._state
        if state.status != ModelStatus.READY or state.model is None:
            raise NotReadyError(f"Model is {state.status.value}")
        return state.model

    def load(self) -> LoadedModel:
        """
        Load the model and publish it.

        A failed reload leaves an already published model in place.

        Raises:
            LoadError: If the model could not be loaded
        """
        with self._write_lock:
            previous = self._state
            if previous.model is None:
                self._state = ModelState(status=ModelStatus.LOADING)

            logger.info("Loading model...", extra={'model_url': self.loader.location})
            start_time = time.time()
            try:
                model = self.loader.load()
            except Exception as e:
                error = e if isinstance(e, LoadError) else LoadError(f"Unexpected error loading model: {e}")
                if previous.model is not None:
                    logger.error(f"Model reload failed, keeping previous model: {error}")
                    self._state = previous
                else:
                    logger.error(f"Failed to load model: {error}")
                    self._state = ModelState(status=ModelStatus.FAILED, error=str(error))
                if error is e:
                    raise
                raise error from e

            self._state = ModelState(status=ModelStatus.READY, model=model)
            logger.info(
                f"Model loaded successfully in {time.time() - start_time:.2f}s "
                f"({model.size_bytes} bytes, device={model.device})",
                extra={'model_url': model.location},
            )
            return model

    def load_in_background(self) -> threading.Thread:
        """Start load() on a daemon thread. Failures are logged and leave the state FAILED."""
        def _run():
            try:
                self.load()
            except LoadError:
                logger.error("Background model load failed; service stays not ready")

        self._thread = threading.Thread(target=_run, name='model-loader', daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for a background load to finish. Returns True if ready."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.is_ready

    def info(self) -> Dict[str, Any]:
        state = self._state
        info = {
            'status': state.status.value,
            'loaded': state.model is not None,
            'location': self.loader.location,
            'framework': 'pytorch',
            'version': torch.__version__,
            'input_shape': [1, IMAGE_SIZE, IMAGE_SIZE, 3],
            'device': self.loader.device,
        }
        if state.model is not None:
            info['loaded_at'] = state.model.loaded_at
            info['size_bytes'] = state.model.size_bytes
        if state.error:
            info['error'] = state.error
        return info

    def __repr__(self) -> str:
        return f"ModelManager(location='{self.loader.location}', status='{self.status.value}')"
