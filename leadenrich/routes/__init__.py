from leadenrich.routes import health, monitoring

__all__ = ["health", "monitoring"]
