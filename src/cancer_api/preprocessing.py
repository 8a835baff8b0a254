"""
Image preprocessing for the classifier.

Turns uploaded bytes into the (1, 224, 224, 3) float32 tensor the model was
trained on:
- format sniffed from content by Pillow, never from the filename
- grayscale broadcast to 3 channels, alpha dropped by truncation
- nearest-neighbour resize to 224x224
- batch dimension added, pixel values scaled to [0, 1]
"""

import io
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError
from .logger import get_logger

logger = get_logger(__name__)

IMAGE_SIZE = 224
CHANNELS = 3
DEFAULT_MAX_DIMENSION = 4096

# Modes whose pixels are already 1 or 3/4 channels of 8-bit data
_DIRECT_MODES = ('RGB', 'RGBA', 'L', 'LA')


def decode_image(data: bytes, max_dimension: Optional[int] = DEFAULT_MAX_DIMENSION) -> np.ndarray:
    """
    Decode image bytes into an (H, W, C) uint8 array.

    C is 1, 2, 3 or 4 depending on the source; call ensure_rgb() next.

    Raises:
        DecodeError: If the bytes are not a readable image
    """
    if not data:
        raise DecodeError("Empty image data")

    try:
        image = Image.open(io.BytesIO(data))
        width, height = image.size
        if max_dimension and (width > max_dimension or height > max_dimension):
            raise DecodeError(
                f"Image dimensions too large: {width}x{height} (max: {max_dimension})"
            )
        image.load()

        if image.mode == 'P':
            image = image.convert('RGBA' if 'transparency' in image.info else 'RGB')
        elif image.mode == '1':
            image = image.convert('L')
        elif image.mode not in _DIRECT_MODES:
            logger.debug(f"Converting image from {image.mode} to RGB")
            image = image.convert('RGB')
    except DecodeError:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    array = np.asarray(image, dtype=np.uint8)
    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    return array


def ensure_rgb(array: np.ndarray) -> np.ndarray:
    """
    Reduce a decoded (H, W, C) array to exactly 3 channels.

    - 1 channel (gray): broadcast to 3 identical channels
    - 2 channels (gray + alpha): gray broadcast, alpha dropped
    - 4 channels: first 3 kept unchanged, alpha dropped without compositing

    Raises:
        DecodeError: If the array cannot be reduced to 3 channels
    """
    if array.ndim != 3:
        raise DecodeError(f"Expected (H, W, C) pixel array, got shape {array.shape}")

    channels = array.shape[2]
    if channels == 1 or channels == 2:
        array = np.repeat(array[:, :, :1], CHANNELS, axis=2)
    elif channels == 4:
        array = array[:, :, :CHANNELS]

    if array.shape[2] != CHANNELS:
        raise DecodeError(f"Unsupported channel count: {channels}")
    return np.ascontiguousarray(array)


def resize_nearest(array: np.ndarray, size: int = IMAGE_SIZE) -> np.ndarray:
    """Resize an (H, W, 3) uint8 array to (size, size, 3) with nearest-neighbour sampling."""
    if array.shape[0] == size and array.shape[1] == size:
        return array
    image = Image.fromarray(array)
    resized = image.resize((size, size), resample=Image.Resampling.NEAREST)
    return np.asarray(resized, dtype=np.uint8)


def normalize(data: bytes, max_dimension: Optional[int] = DEFAULT_MAX_DIMENSION) -> np.ndarray:
    """
    Decode and normalize an uploaded image for the classifier.

    Args:
        data: Raw image bytes of any format Pillow can sniff
        max_dimension: Largest accepted width or height, None to disable

    Returns:
        float32 array of shape (1, 224, 224, 3) with values in [0, 1]

    Raises:
        DecodeError: If the bytes cannot be decoded into a 3-channel image

    Example:
        >>> tensor = normalize(png_bytes)
        >>> tensor.shape
        (1, 224, 224, 3)
    """
    pixels = ensure_rgb(decode_image(data, max_dimension=max_dimension))
    pixels = resize_nearest(pixels, IMAGE_SIZE)
    tensor = pixels[np.newaxis, ...].astype(np.float32) / 255.0
    return tensor
