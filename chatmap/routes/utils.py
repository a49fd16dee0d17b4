"""
Shared helpers for the route handlers.
"""

from quart import current_app, jsonify

from chatmap.services.wiring import Services
from chatmap.usecases.types import ErrorCode, UseCaseResult

STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.TIME_CONSTRAINT_EXCEEDED: 422,
    ErrorCode.CLASSIFICATION_LOW_CONFIDENCE: 422,
    ErrorCode.UPSTREAM_SERVICE_ERROR: 502,
    ErrorCode.TIMEOUT_ERROR: 504,
}


def get_services() -> Services:
    services = current_app.config.get('CHATMAP_SERVICES')
    if services is None:
        raise RuntimeError("services are not initialised; the app has not started serving")
    return services


def status_for(result: UseCaseResult) -> int:
    if result.success:
        return 200
    return STATUS_BY_CODE.get(result.error.code, 500) if result.error else 500


def result_response(result: UseCaseResult):
    """JSON body plus HTTP status for a use-case result."""
    return jsonify(result.to_dict()), status_for(result)


def error_response(message: str, status: int = 400, code: ErrorCode = ErrorCode.VALIDATION_ERROR):
    return jsonify({'success': False, 'error': {'code': code.value, 'message': message, 'retryable': False}}), status
