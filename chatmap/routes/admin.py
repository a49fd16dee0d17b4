"""
Admin routes: Health checks and metrics
"""
import time

from quart import Blueprint, current_app, jsonify

from chatmap.providers.base import ProviderStatus

from .utils import get_services

bp = Blueprint('admin', __name__)


@bp.route('/api/health')
async def health():
    """Provider health plus presence of optional components."""
    services = get_services()
    results = await services.container.health_check_all()
    providers = {name: result.to_dict() for name, result in results.items()}
    healthy = all(r.status != ProviderStatus.UNHEALTHY for r in results.values())
    return jsonify({
        'status': 'ok' if healthy else 'degraded',
        'time': time.time(),
        'providers': providers,
        'redis': current_app.config.get('CHATMAP_REDIS') is not None,
        'llm': services.classifier.llm is not None,
    })


@bp.route('/api/metrics')
async def metrics():
    """Counters, latency summaries and per-service rate limiter state"""
    services = get_services()
    data = await services.metrics.get_metrics()
    data['rate_limiters'] = services.container.limiters.get_all_stats()
    return jsonify(data)


def register(app):
    """Register admin routes with app"""
    app.register_blueprint(bp)
