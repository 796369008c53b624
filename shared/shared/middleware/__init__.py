from shared.middleware.error_handler import error_envelope_middleware
from shared.middleware.request_id import get_request_id, request_id_middleware

__all__ = ["error_envelope_middleware", "get_request_id", "request_id_middleware"]
