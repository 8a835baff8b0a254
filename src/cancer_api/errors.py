"""
Error taxonomy for the prediction service.

Each failure is raised as a specific type where it originates; the HTTP
layer maps types to responses through ``status_code`` and
``public_message`` and never inspects message text.
"""

PREDICTION_FAILED_MESSAGE = "Terjadi kesalahan dalam melakukan prediksi"
HISTORY_FAILED_MESSAGE = "Gagal mengambil data histories"
NOT_READY_MESSAGE = "Model is not ready"


class CancerApiError(Exception):
    """Base class for all service errors."""

    status_code = 500
    public_message = PREDICTION_FAILED_MESSAGE


class ValidationError(CancerApiError):
    """Client upload rejected before any processing. Message is shown verbatim."""

    status_code = 400

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
        self.public_message = message


class DecodeError(CancerApiError):
    """Uploaded bytes could not be decoded into an image tensor."""

    status_code = 400


class NotReadyError(CancerApiError):
    """Prediction requested before the model finished loading."""

    status_code = 503
    public_message = NOT_READY_MESSAGE


class PredictError(CancerApiError):
    """Forward pass failed or produced an unusable output."""

    status_code = 400


class StoreError(CancerApiError):
    """Record store read or write failed."""

    status_code = 400


class LoadError(CancerApiError):
    """Model artifact could not be fetched or deserialized."""

    def __init__(self, message: str, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found
