"""OAuth error taxonomy."""

from typing import Optional

from fastapi.responses import JSONResponse


INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
INVALID_CLIENT_METADATA = "invalid_client_metadata"
INVALID_REDIRECT_URI = "invalid_redirect_uri"
INVALID_GRANT = "invalid_grant"
UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
SERVER_ERROR = "server_error"


class OAuthError(Exception):
    """
    Raised by the authorization server for any protocol-level failure.

    Attributes:
        error: OAuth error code (e.g. "invalid_grant")
        description: Human-readable detail returned as error_description
        status_code: HTTP status code to return
    """

    def __init__(self, error: str, description: Optional[str] = None, status_code: int = 400):
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(f"{error}: {description}" if description else error)

    def to_response(self) -> JSONResponse:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return JSONResponse(body, status_code=self.status_code, headers={"Cache-Control": "no-store"})
