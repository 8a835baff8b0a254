"""
Cancer Prediction API Application

REST API for image-based cancer prediction using Flask.
"""

import sys
import time
import uuid
from typing import Optional

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config, config
from .decision import classify
from .errors import (
    HISTORY_FAILED_MESSAGE,
    PREDICTION_FAILED_MESSAGE,
    CancerApiError,
    LoadError,
    NotReadyError,
    StoreError,
    ValidationError,
)
from .logger import get_logger, setup_logging
from .model_loader import ModelLoader, ModelManager
from .predictor import Predictor
from .preprocessing import normalize
from .records import PredictionRecord, RecordStore, build_record_store, utc_timestamp

logger = get_logger(__name__)

UPLOAD_FIELD = 'image'
SUCCESS_MESSAGE = 'Model is predicted successfully'

# Room for multipart boundaries and headers on top of the file itself
MULTIPART_ALLOWANCE = 64 * 1024


# =========================================================================
# Helper Functions
# =========================================================================

def generate_request_id() -> str:
    """Generate unique request ID for log correlation."""
    return f"req-{uuid.uuid4().hex[:8]}"


def format_fail_response(message: str) -> dict:
    return {'status': 'fail', 'message': message}


def payload_too_large_message(limit: int) -> str:
    return f'Payload content length greater than maximum allowed: {limit}'


def read_upload(settings) -> bytes:
    """
    Validate the multipart upload and return the file bytes.

    Raises:
        ValidationError: No file, not an image, or larger than MAX_FILE_SIZE
    """
    upload = request.files.get(UPLOAD_FIELD)
    if upload is None or upload.filename == '':
        raise ValidationError('File not provided')

    if not (upload.mimetype or '').startswith('image/'):
        raise ValidationError('File must be an image')

    upload.stream.seek(0, 2)
    file_size = upload.stream.tell()
    upload.stream.seek(0)
    if file_size > settings.MAX_FILE_SIZE:
        raise ValidationError(payload_too_large_message(settings.MAX_FILE_SIZE), status_code=413)

    return upload.read()


def build_model_manager(settings) -> ModelManager:
    loader = ModelLoader(
        location=settings.MODEL_URL,
        device=settings.DEVICE,
        timeout=settings.MODEL_DOWNLOAD_TIMEOUT,
        endpoint_url=settings.AWS_ENDPOINT_URL,
    )
    return ModelManager(loader)


# =========================================================================
# Application Factory
# =========================================================================

def create_app(settings: Optional[Config] = None,
               model_manager: Optional[ModelManager] = None,
               record_store: Optional[RecordStore] = None) -> Flask:
    """
    Build the Flask application.

    Args:
        settings: Configuration, defaults to the global config
        model_manager: Owner of the model; built from settings if omitted
        record_store: Where predictions are persisted; built from settings if omitted

    Returns:
        Configured Flask app. The model is not loaded here, see init_model().
    """
    if settings is None:
        settings = config
    if model_manager is None:
        model_manager = build_model_manager(settings)
    if record_store is None:
        record_store = build_record_store(settings)
    predictor = Predictor(model_manager)

    app = Flask(__name__)
    app.json.sort_keys = False
    app.config['MAX_CONTENT_LENGTH'] = settings.MAX_FILE_SIZE + MULTIPART_ALLOWANCE
    app.extensions['model_manager'] = model_manager
    app.extensions['record_store'] = record_store

    @app.route('/predict', methods=['POST'])
    def predict():
        """Classify one uploaded image and store the outcome."""
        request_id = generate_request_id()
        start_time = time.time()

        try:
            image_bytes = read_upload(settings)
            if not model_manager.is_ready:
                raise NotReadyError(f"Model is {model_manager.status.value}")

            tensor = normalize(image_bytes, max_dimension=settings.MAX_IMAGE_DIMENSION)
            probability = predictor.predict(tensor)
            result, _ = classify(probability)

            record = PredictionRecord.create(result)
            record_store.put(record)

        except ValidationError as e:
            logger.info(f"Rejected upload: {e}", extra={'request_id': request_id})
            return jsonify(format_fail_response(e.public_message)), e.status_code
        except CancerApiError as e:
            logger.error(
                f"Prediction failed ({type(e).__name__}): {e}",
                exc_info=True,
                extra={'request_id': request_id},
            )
            return jsonify(format_fail_response(e.public_message)), e.status_code
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unexpected prediction error: {e}", exc_info=True,
                         extra={'request_id': request_id})
            return jsonify(format_fail_response(PREDICTION_FAILED_MESSAGE)), 400

        latency_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Prediction successful: result={result}, probability={probability:.4f}, "
            f"latency={latency_ms:.2f}ms",
            extra={'request_id': request_id, 'record_id': record.id},
        )

        return jsonify({
            'status': 'success',
            'message': SUCCESS_MESSAGE,
            'data': record.to_dict(),
        }), 200

    @app.route('/predict/histories', methods=['GET'])
    def histories():
        """List every stored prediction."""
        try:
            records = record_store.list_all()
        except StoreError as e:
            logger.error(f"Failed to read histories: {e}", exc_info=True)
            return jsonify(format_fail_response(HISTORY_FAILED_MESSAGE)), 500
        except Exception as e:
            logger.error(f"Unexpected history error: {e}", exc_info=True)
            return jsonify(format_fail_response(HISTORY_FAILED_MESSAGE)), 500

        return jsonify({
            'status': 'success',
            'data': [record.to_dict() for record in records],
        }), 200

    @app.route('/health', methods=['GET'])
    def health():
        """Readiness probe: 200 once the model is loaded, 503 before."""
        state = model_manager.current()
        if model_manager.is_ready:
            return jsonify({
                'status': 'healthy',
                'model_loaded': True,
                'model_status': state.status.value,
                'timestamp': utc_timestamp(),
            }), 200
        return jsonify({
            'status': 'unhealthy',
            'model_loaded': False,
            'model_status': state.status.value,
            'reason': state.error or 'Model not loaded',
            'timestamp': utc_timestamp(),
        }), 503

    @app.route('/info', methods=['GET'])
    def info():
        """Model information and request limits."""
        return jsonify({
            'model': model_manager.info(),
            'api': {
                'version': settings.API_VERSION,
                'endpoints': ['/predict', '/predict/histories', '/health', '/info'],
            },
            'limits': {
                'max_file_size_bytes': settings.MAX_FILE_SIZE,
                'max_image_dimension': settings.MAX_IMAGE_DIMENSION,
            },
            'timestamp': utc_timestamp(),
        }), 200

    # =====================================================================
    # Error Handlers
    # =====================================================================

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify(format_fail_response(payload_too_large_message(settings.MAX_FILE_SIZE))), 413

    @app.errorhandler(404)
    def not_found(error):
        return jsonify(format_fail_response('Endpoint not found')), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify(format_fail_response('Method not allowed')), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify(format_fail_response('Internal server error')), 500

    return app


# =========================================================================
# Application Startup
# =========================================================================

def init_model(model_manager: ModelManager, mode: str = 'blocking') -> None:
    """
    Load the model before (blocking) or while (background) serving.

    Raises:
        LoadError: In blocking mode, if the model could not be loaded
    """
    logger.info(f"Initializing model ({mode})...")
    if mode == 'background':
        model_manager.load_in_background()
    else:
        model_manager.load()


def main() -> None:
    """Run the API server."""
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    logger.info(f"Configuration loaded: {config}")

    app = create_app(config)
    try:
        init_model(app.extensions['model_manager'], config.MODEL_LOAD_MODE)
    except LoadError as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)

    logger.info(f"Starting server on {config.HOST}:{config.PORT}")
    app.run(
        host=config.HOST,
        port=config.PORT,
        debug=config.DEBUG,
        threaded=True,
        use_reloader=False,
    )


if __name__ == '__main__':
    main()
