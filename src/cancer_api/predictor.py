"""
Forward pass over the published model.
"""

import math

import numpy as np
import torch

from .errors import PredictError
from .logger import get_logger
from .model_loader import ModelManager
from .preprocessing import CHANNELS, IMAGE_SIZE

logger = get_logger(__name__)

INPUT_SHAPE = (1, IMAGE_SIZE, IMAGE_SIZE, CHANNELS)


class Predictor:
    """
    Scores a single normalized image tensor.

    Attributes:
        manager: ModelManager holding the shared, read-only model
    """

    def __init__(self, manager: ModelManager):
        self.manager = manager

    def predict(self, tensor: np.ndarray) -> float:
        """
        Run the model on one (1, 224, 224, 3) tensor.

        Args:
            tensor: Output of preprocessing.normalize()

        Returns:
            Probability of malignancy in [0, 1]

        Raises:
            NotReadyError: If the model has not been loaded
            PredictError: If the input shape is wrong or inference fails
        """
        model = self.manager.require_model()

        if tuple(tensor.shape) != INPUT_SHAPE:
            raise PredictError(
                f"Expected input shape {INPUT_SHAPE}, got {tuple(tensor.shape)}"
            )

        try:
            inputs = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))
            inputs = inputs.to(model.device)
            with torch.no_grad():
                outputs = model.module(inputs)
        except RuntimeError as e:
            raise PredictError(f"Inference failed: {e}") from e

        return self._first_scalar(outputs)

    @staticmethod
    def _first_scalar(outputs) -> float:
        if isinstance(outputs, (tuple, list)):
            if not outputs:
                raise PredictError("Model returned no outputs")
            outputs = outputs[0]
        if not isinstance(outputs, torch.Tensor):
            raise PredictError(f"Unexpected model output type: {type(outputs).__name__}")

        values = outputs.detach().reshape(-1)
        if values.numel() == 0:
            raise PredictError("Model returned an empty tensor")

        probability = float(values[0].item())
        if math.isnan(probability) or not 0.0 <= probability <= 1.0:
            raise PredictError(f"Model output {probability} is not a probability")

        logger.debug(f"Model output: {probability:.6f}")
        return probability
