import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from bloodline.utils.logging_config import LogContext, get_logger, log_performance_metric

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to handle request/response logging and context management
    """

    def __init__(self, app: FastAPI, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        client_ip = self.get_client_ip(request)

        with LogContext(req_id=request_id):
            start_time = time.time()

            if self.log_requests:
                logger.info(
                    f"Incoming request: {request.method} {request.url.path}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": str(request.url.path),
                            "query_params": dict(request.query_params),
                            "client_ip": client_ip,
                            "action": "request_received",
                        }
                    },
                )

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Request failed: {request.method} {request.url.path}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": str(request.url.path),
                            "error_type": type(e).__name__,
                            "response_time_seconds": round(time.time() - start_time, 4),
                            "action": "request_failed",
                        }
                    },
                    exc_info=True,
                )
                raise

            response_time = time.time() - start_time
            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_responses:
                logger.info(
                    f"Request completed: {request.method} {request.url.path} - {response.status_code}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": str(request.url.path),
                            "status_code": response.status_code,
                            "response_time_seconds": round(response_time, 4),
                            "client_ip": client_ip,
                            "action": "request_completed",
                        }
                    },
                )

            if response_time > 1.0:
                log_performance_metric(
                    f"{request.method} {request.url.path}",
                    response_time,
                    additional_metrics={"status_code": response.status_code},
                )

            return response

    def get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"


def setup_logging_middleware(app: FastAPI):
    """
    Set up logging middleware for the FastAPI application
    """
    app.add_middleware(LoggingMiddleware, log_requests=True, log_responses=True)
