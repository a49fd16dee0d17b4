"""
Quart application factory for the ChatMap HTTP API.
"""

import logging
from typing import Optional

from quart import Quart
from quart_cors import cors
from redis import asyncio as aioredis

from chatmap.config import Config, get_config, setup_logging
from chatmap.routes import register_blueprints
from chatmap.services.wiring import Services, build_services


def create_app(services: Optional[Services] = None, config: Optional[Config] = None) -> Quart:
    """Build the app.

    Injected `services` are used as-is and left open at shutdown; otherwise
    services (and Redis, when REDIS_URL is set) are created at startup and
    closed at shutdown.
    """
    config = config or (services.config if services is not None else get_config())
    app = Quart(__name__)
    app = cors(app, allow_origin=config.cors_origins, allow_methods=["GET", "POST", "OPTIONS"])
    app.config['CHATMAP_CONFIG'] = config
    app.config['CHATMAP_SERVICES'] = services
    app.config['CHATMAP_REDIS'] = None

    register_blueprints(app)

    @app.before_serving
    async def startup():
        if app.config['CHATMAP_SERVICES'] is not None:
            return
        redis_client = None
        if config.redis_url:
            try:
                redis_client = aioredis.from_url(
                    config.redis_url,
                    socket_timeout=config.redis_config.socket_timeout,
                    socket_connect_timeout=config.redis_config.socket_connect_timeout,
                )
                await redis_client.ping()
                app.logger.info("Redis connected")
            except Exception as e:
                redis_client = None
                app.logger.warning("Redis not available; using in-process cache and metrics: %s", e)
        app.config['CHATMAP_REDIS'] = redis_client
        app.config['CHATMAP_SERVICES'] = build_services(config, redis_client)
        app.config['CHATMAP_OWNS_SERVICES'] = True

    @app.after_serving
    async def shutdown():
        if not app.config.get('CHATMAP_OWNS_SERVICES'):
            return
        services = app.config['CHATMAP_SERVICES']
        if services is not None:
            await services.close()
        redis_client = app.config.get('CHATMAP_REDIS')
        if redis_client is not None:
            await redis_client.aclose()

    return app


def main():
    config = get_config()
    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("Starting ChatMap API (%s)", config.environment.value)
    logger.debug("Configuration: %s", config.to_dict())
    app = create_app(config=config)
    app.run(host=config.host, port=config.port, debug=config.debug)


if __name__ == "__main__":
    main()
