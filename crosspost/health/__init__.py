from crosspost.health.server import HealthServer, create_health_app, health_report

__all__ = ["HealthServer", "create_health_app", "health_report"]
