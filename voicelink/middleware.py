import logging
import time

logger = logging.getLogger(__name__)

MAX_LOGGED_BODY = 2000

# Provider callbacks carry phone numbers and account ids in the form body.
UNLOGGED_BODY_PREFIXES = ("/webhooks/",)


class RequestResponseLoggingMiddleware:
    """
    Logs every API request and its response with the elapsed time.

    JSON bodies are logged truncated; webhook form bodies and binary
    payloads are replaced by a placeholder.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        started = time.monotonic()
        logger.info(
            "API Request: %s %s Body: %s",
            request.method,
            request.get_full_path(),
            self._request_body(request),
        )

        response = self.get_response(request)

        logger.info(
            "API Response: %s %s Status: %d Elapsed: %.1fms Content: %s",
            request.method,
            request.get_full_path(),
            response.status_code,
            (time.monotonic() - started) * 1000,
            self._response_body(response),
        )
        return response

    def _request_body(self, request):
        if request.method not in ("POST", "PUT", "PATCH"):
            return ""
        if request.path.startswith(UNLOGGED_BODY_PREFIXES):
            return "<webhook body not logged>"
        if not request.META.get("CONTENT_TYPE", "").startswith("application/json"):
            return "<non-JSON body not logged>"
        try:
            return request.body.decode("utf-8")[:MAX_LOGGED_BODY]
        except UnicodeDecodeError:
            return "<could not decode body>"

    def _response_body(self, response):
        content_type = response.get("Content-Type", "")
        if getattr(response, "streaming", False):
            return "<streaming content>"
        if not content_type.startswith(("application/json", "text/")):
            return f"<Content-Type: {content_type}>"
        try:
            return response.content.decode("utf-8")[:MAX_LOGGED_BODY]
        except UnicodeDecodeError:
            return "<could not decode content>"
