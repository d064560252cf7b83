from .status_routes import create_app, get_session, router

__all__ = ["create_app", "get_session", "router"]
