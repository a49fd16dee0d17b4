"""
POI routes: direct access to the spatial use cases, geocoding and directions
"""
from quart import Blueprint, request

from chatmap.usecases.enroute import EnrouteRequest
from chatmap.usecases.geocode import GeocodeRequest
from chatmap.usecases.near_poi import NearPOIRequest
from chatmap.usecases.nearest import NearestRequest
from chatmap.usecases.route import RouteRequest
from chatmap.usecases.within_time import WithinTimeRequest

from .utils import error_response, get_services, result_response

bp = Blueprint('poi', __name__)


async def _payload():
    return await request.get_json(silent=True) or {}


@bp.route('/api/poi/within-time', methods=['POST'])
async def within_time():
    """POIs reachable within a travel-time budget."""
    payload = await _payload()
    services = get_services()
    result = await services.use_cases.within_time.execute(WithinTimeRequest(
        location=payload.get('location'),
        poi_type=payload.get('poi_type'),
        time_minutes=payload.get('time_minutes'),
        transport=payload.get('transport', 'walking'),
        cuisine=payload.get('cuisine'),
        max_results=payload.get('max_results', services.config.usecase_config.within_time_max_results),
        duration_modes=payload.get('duration_modes') or (),
    ))
    return result_response(result)


@bp.route('/api/poi/nearest', methods=['POST'])
async def nearest():
    payload = await _payload()
    result = await get_services().use_cases.nearest.execute(NearestRequest(
        poi_type=payload.get('poi_type'),
        user_location=payload.get('user_location'),
        transport=payload.get('transport', 'walking'),
        cuisine=payload.get('cuisine'),
        use_routing=bool(payload.get('use_routing', False)),
    ))
    return result_response(result)


@bp.route('/api/poi/near-poi', methods=['POST'])
async def near_poi():
    """POIs of one type near the nearest POI of another type."""
    payload = await _payload()
    services = get_services()
    uc = services.config.usecase_config
    result = await services.use_cases.near_poi.execute(NearPOIRequest(
        primary_poi_type=payload.get('primary_poi_type'),
        secondary_poi_type=payload.get('secondary_poi_type'),
        user_location=payload.get('user_location'),
        transport=payload.get('transport', 'walking'),
        max_time_from_secondary=payload.get('max_time_from_secondary', uc.near_poi_max_time),
        cuisine=payload.get('cuisine'),
        max_results=payload.get('max_results', uc.near_poi_max_results),
    ))
    return result_response(result)


@bp.route('/api/poi/enroute', methods=['POST'])
async def enroute():
    """Best stop along the way to a destination (coordinates or text)."""
    payload = await _payload()
    services = get_services()
    result = await services.use_cases.enroute.execute(EnrouteRequest(
        poi_type=payload.get('poi_type'),
        user_location=payload.get('user_location'),
        destination=payload.get('destination'),
        transport=payload.get('transport', 'driving'),
        max_total_time_minutes=payload.get('max_total_time_minutes'),
        max_detour_minutes=payload.get('max_detour_minutes', services.config.usecase_config.enroute_max_detour),
        cuisine=payload.get('cuisine'),
    ))
    return result_response(result)


@bp.route('/api/geocode', methods=['POST'])
async def geocode():
    payload = await _payload()
    address = payload.get('address')
    if not isinstance(address, str):
        return error_response("address required")
    result = await get_services().use_cases.geocode.execute(GeocodeRequest(
        address=address,
        country_code=payload.get('country_code'),
        max_results=payload.get('max_results', 5),
    ))
    return result_response(result)


@bp.route('/api/route', methods=['POST'])
async def route():
    payload = await _payload()
    result = await get_services().use_cases.route.execute(RouteRequest(
        start=payload.get('start'),
        destination=payload.get('destination'),
        transport=payload.get('transport', 'walking'),
        waypoints=payload.get('waypoints') or [],
    ))
    return result_response(result)


def register(app):
    """Register POI routes with app"""
    app.register_blueprint(bp)
