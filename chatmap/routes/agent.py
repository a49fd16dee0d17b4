"""
Agent routes: query classification and full orchestration
"""
from quart import Blueprint, current_app, jsonify, request

from chatmap.agents.orchestrator import build_context
from chatmap.usecases.types import ValidationError

from .utils import error_response, get_services, status_for

bp = Blueprint('agent', __name__)


@bp.route('/api/classify', methods=['POST'])
async def classify():
    """Classify a query without executing it.

    Request JSON: {"query": "...", "conversation_history": [...] (optional)}
    """
    payload = await request.get_json(silent=True) or {}
    services = get_services()
    try:
        context = build_context(payload.get('conversation_history'))
        classification = await services.classifier.classify(payload.get('query') or "", context)
    except ValidationError as e:
        return error_response(str(e))
    return jsonify(classification.to_dict())


@bp.route('/api/agent', methods=['POST'])
async def agent():
    """Classify and execute a query.

    Request JSON: {"query": "...", "user_id": "...", "user_location": {"lat": .., "lng": ..},
                   "conversation_history": [...], "memory_enabled": true}
    """
    payload = await request.get_json(silent=True) or {}
    services = get_services()
    response = await services.orchestrator.orchestrate(
        query=payload.get('query') or "",
        user_id=payload.get('user_id') or "",
        user_location=payload.get('user_location'),
        conversation_history=payload.get('conversation_history'),
        memory_enabled=bool(payload.get('memory_enabled', True)),
    )
    current_app.logger.info(
        "[AGENT] %s via %s in %.0fms (%d calls)",
        response.state.value, response.agent_used, response.execution_time_ms, response.api_calls_count,
    )
    return jsonify(response.to_dict()), status_for(response.result)


def register(app):
    """Register agent routes with app"""
    app.register_blueprint(bp)
