"""
Serverless Functions Gateway.

All outbound HTTP calls to the serverless endpoints (create-user,
reset-user-password, generate-report) go through this class.

  - Bearer token from FUNCTIONS_API_KEY
  - JSON POST, timeout from FUNCTIONS_TIMEOUT
  - No automatic retry: callers degrade to a local fallback instead
  - Error bodies follow ``{success: false, error|message, code?}``

Every failure (not configured, network error, non-2xx, ``success: false``)
raises ``TransportError``. Services catch it and fall back, reporting the
degradation as a warning.

Testability: pass a mock `session` to FunctionsGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from taskflow.core.exceptions import TransportError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 15

# Stable codes for gateway-level failures, returned in ``TransportError.details``
NOT_CONFIGURED = "FUNCTION_NOT_CONFIGURED"
NOT_DEPLOYED = "FUNCTION_NOT_DEPLOYED"
UNREACHABLE = "FUNCTION_UNREACHABLE"
REMOTE_ERROR = "FUNCTION_ERROR"


class GatewayResult:
    """Structured return value from a successful FunctionsGateway call.

    Attributes:
        ok:           Always True (failures raise TransportError).
        status_code:  HTTP status code.
        data:         Parsed JSON response body.
        duration_ms:  Round-trip latency in milliseconds.
    """

    def __init__(self, ok: bool, status_code: int | None, data: dict | None, duration_ms: int) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data or {}
        self.duration_ms = duration_ms

    def __repr__(self) -> str:
        return f"<GatewayResult ok={self.ok} status={self.status_code} {self.duration_ms}ms>"


def _transport_error(message: str, *, reason: str, status_code: int | None = None) -> TransportError:
    exc = TransportError(message, status_code=status_code)
    exc.details["reason"] = reason
    return exc


class FunctionsGateway:
    """Serverless endpoint gateway.

    Constructed once in ``create_app()`` and stored on
    ``app.extensions["functions_gateway"]``.

    Usage:
        gateway = current_app.extensions["functions_gateway"]
        result = gateway.invoke("create-user", {"email": "...", "role": "user"})
    """

    def __init__(
        self,
        base_url: str = "",
        api_key: str = "",
        *,
        timeout: int = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    @classmethod
    def from_config(cls, config: Any, session: requests.Session | None = None) -> FunctionsGateway:
        return cls(
            config.get("FUNCTIONS_BASE_URL", ""),
            config.get("FUNCTIONS_API_KEY", ""),
            timeout=config.get("FUNCTIONS_TIMEOUT", _DEFAULT_TIMEOUT),
            session=session,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def invoke(self, function_name: str, payload: dict) -> GatewayResult:
        """POST ``payload`` to ``<base_url>/<function_name>``.

        Returns:
            GatewayResult on HTTP 2xx with a body that is not ``success: false``.

        Raises:
            TransportError: for every other outcome.
        """
        if not self.configured:
            raise _transport_error(
                f"Function '{function_name}' is not configured", reason=NOT_CONFIGURED,
            )

        url = f"{self.base_url}/{function_name}"
        t0 = time.perf_counter()
        try:
            resp = self.session.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as exc:
            logger.warning("Function call timed out function=%s timeout=%ss", function_name, self.timeout)
            raise _transport_error(
                f"Function '{function_name}' timed out after {self.timeout}s", reason=UNREACHABLE,
            ) from exc
        except requests.RequestException as exc:
            logger.warning("Function network error function=%s error=%s", function_name, str(exc)[:500])
            raise _transport_error(
                f"Function '{function_name}' is unreachable", reason=UNREACHABLE,
            ) from exc
        duration_ms = int((time.perf_counter() - t0) * 1000)

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if resp.status_code == 404:
            raise _transport_error(
                f"Function '{function_name}' is not deployed",
                reason=NOT_DEPLOYED, status_code=resp.status_code,
            )

        if not resp.ok or body.get("success") is False:
            message = body.get("error") or body.get("message") or f"HTTP {resp.status_code}"
            logger.warning(
                "Function call failed function=%s status=%d error=%s",
                function_name, resp.status_code, message,
            )
            raise _transport_error(
                f"Function '{function_name}' failed: {message}",
                reason=body.get("code") or REMOTE_ERROR, status_code=resp.status_code,
            )

        logger.info("Function call ok function=%s status=%d duration_ms=%d",
                    function_name, resp.status_code, duration_ms)
        return GatewayResult(ok=True, status_code=resp.status_code, data=body, duration_ms=duration_ms)
