"""Outbound request/response value objects and the HCM credential."""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class Credential(BaseModel):
    """Access credential for Oracle HCM.

    Only ``authorization_header()`` exposes the secret, and only to the auth
    middleware attaching it to an outbound request.
    """
    model_config = ConfigDict(frozen=True)

    access_token: SecretStr
    token_type: Literal["Bearer", "Basic"] = "Bearer"
    expires_at: Optional[float] = Field(default=None, description="Epoch seconds; None never expires")
    issued_at: Optional[float] = None

    def is_valid(self, now: float, safety_margin: float = 0.0) -> bool:
        if self.expires_at is None:
            return True
        return now < self.expires_at - safety_margin

    def refresh_margin(self, safety_margin: float) -> float:
        """``safety_margin``, capped at half the lifetime of a short-lived token."""
        if self.expires_at is None or self.issued_at is None:
            return safety_margin
        return min(safety_margin, (self.expires_at - self.issued_at) / 2)

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token.get_secret_value()}"


class HttpRequestSpec(BaseModel):
    """One outbound HCM call, relative to the versioned resources root."""
    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    params: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    json_body: Optional[Any] = None
    timeout: Optional[float] = None

    @property
    def idempotent(self) -> bool:
        return self.method.upper() in IDEMPOTENT_METHODS

    def with_headers(self, **headers: str) -> "HttpRequestSpec":
        merged = dict(self.headers)
        merged.update(headers)
        return self.model_copy(update={"headers": merged})


class HttpResponse(BaseModel):
    """Outcome of one outbound HCM call."""
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    elapsed_ms: int = 0

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300
