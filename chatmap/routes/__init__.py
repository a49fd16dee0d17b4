"""
Routes package for the ChatMap API
Blueprint-based modular route organization
"""


def register_blueprints(app):
    """
    Register all route blueprints with the Quart app

    Admin routes (health, metrics) first, then the API surfaces.
    """
    from .admin import register as register_admin
    from .agent import register as register_agent
    from .poi import register as register_poi

    register_admin(app)
    register_agent(app)
    register_poi(app)
