from flask import Flask, request, jsonify, g
from flask_cors import CORS
import logging
import json
from time import perf_counter

from .config import Settings
from .errors import ConfigurationError, FinalizationInProgressError, FinalizerError, InputError
from .orchestrator import FinalizationOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(log_file=None):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def _status_for(error: FinalizerError) -> int:
    if isinstance(error, InputError):
        return 400
    if isinstance(error, FinalizationInProgressError):
        return 409
    # ConfigurationError, PersistenceError
    return 500


def create_app(orchestrator=None, settings=None):
    """
    Build the Flask app. Without an orchestrator one is wired from settings;
    if provider keys are missing the app still starts and every finalize call
    answers with the configuration error.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_file)

    config_error = None
    if orchestrator is None:
        logger.info(f"API keys found: {'Yes' if not settings.missing_credentials() else 'No'}")
        try:
            logger.info("Initializing finalization pipeline...")
            orchestrator = FinalizationOrchestrator.from_settings(settings)
            logger.info("Finalization pipeline initialized successfully")
        except ConfigurationError as e:
            logger.warning(f"Finalization disabled: {e.message}")
            config_error = e

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.config['FINALIZER_SETTINGS'] = settings
    app.extensions['finalizer'] = orchestrator

    # Per-request timing: record start time and log duration on completion
    @app.before_request
    def _start_timer():
        g._start_time = perf_counter()

    @app.after_request
    def _log_request_duration(response):
        start = getattr(g, '_start_time', None)
        if start is not None:
            duration_ms = (perf_counter() - start) * 1000.0
            response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
            logger.info(
                "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
                request.method,
                request.full_path if request.query_string else request.path,
                response.status_code,
                duration_ms,
                request.remote_addr,
            )
        return response

    @app.teardown_request
    def _teardown_request_log(error=None):
        # If an unhandled exception occurred, ensure we still log duration
        if error is not None:
            start = getattr(g, '_start_time', None)
            duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
            logger.error(
                "request error: method=%s path=%s duration_ms=%s error=%s",
                request.method,
                request.path,
                f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
                repr(error),
            )

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'message': 'Event finalizer API is running!',
            'endpoints': {
                'finalize_event': '/api/finalize-event',
                'health': '/'
            },
            'configured': app.extensions['finalizer'] is not None,
            'status': 'healthy'
        })

    @app.route('/api/finalize-event', methods=['POST'])
    def finalize_event():
        """
        Decide date, station and restaurants for an event and save them
        Expected JSON: {"event_id": "..."}
        """
        logger.info("=== FINALIZE EVENT REQUEST ===")

        finalizer = app.extensions['finalizer']
        if finalizer is None:
            error = config_error or ConfigurationError("Missing API config")
            return jsonify(error.to_dict()), _status_for(error)

        data = request.get_json(silent=True)
        logger.info(f"Request data received: {json.dumps(data) if data else 'None'}")
        if not isinstance(data, dict):
            return jsonify(InputError("JSON data is required").to_dict()), 400

        try:
            report = finalizer.finalize(data.get('event_id'))
        except FinalizerError as e:
            logger.error(f"Finalization failed ({type(e).__name__}): {e.message}")
            return jsonify(e.to_dict()), _status_for(e)

        return jsonify(report.to_dict())

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    return app
