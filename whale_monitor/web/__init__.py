from .app import WhaleMonitorWebApp, create_app, parse_limit

__all__ = ["WhaleMonitorWebApp", "create_app", "parse_limit"]
