from promo_engine.middleware.request_log import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
