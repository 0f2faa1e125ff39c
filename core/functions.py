"""Invoke sibling orchestration endpoints over HTTP.

Round advancement, result processing, refunds and payouts are independently
authorized endpoints. When one needs another it calls it over the network with the
service credential, so each step commits on its own and can be retried on its own.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

import config
from utils.logging_helpers import log_error, log_info

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    function_name: str
    ok: bool
    status_code: Optional[int] = None
    payload: Any = None
    error: Optional[str] = None

    def describe(self) -> str:
        if self.ok:
            return f"{self.function_name} succeeded"
        if self.status_code is None:
            return f"{self.function_name} unreachable: {self.error}"
        return f"{self.function_name} returned {self.status_code}: {self.error}"

    def as_summary(self) -> dict:
        return {
            "triggered": self.ok,
            "status_code": self.status_code,
            "error": self.error,
        }


@dataclass
class HttpFunctionInvoker:
    base_url: str = field(default_factory=lambda: config.FUNCTIONS_BASE_URL)
    timeout: float = field(default_factory=lambda: config.FUNCTION_TIMEOUT_SECONDS)

    def invoke(self, function_name: str, body: dict) -> InvocationResult:
        """POST ``body`` to ``/functions/<function_name>``; never raises."""
        url = f"{self.base_url}/functions/{function_name}"
        headers = {
            "Authorization": f"Bearer {config.SERVICE_ROLE_KEY}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            log_error(logger, "Function invocation failed", function=function_name, error=str(exc))
            return InvocationResult(function_name=function_name, ok=False, error=str(exc))

        try:
            payload = response.json()
        except ValueError:
            payload = {"detail": response.text}

        if response.is_success:
            log_info(logger, "Function invoked", function=function_name, status=response.status_code)
            return InvocationResult(
                function_name=function_name,
                ok=True,
                status_code=response.status_code,
                payload=payload,
            )

        detail = payload.get("detail") if isinstance(payload, dict) else payload
        if isinstance(detail, dict):
            detail = detail.get("message") or str(detail)
        log_error(
            logger,
            "Function returned an error",
            function=function_name,
            status=response.status_code,
            detail=detail,
        )
        return InvocationResult(
            function_name=function_name,
            ok=False,
            status_code=response.status_code,
            payload=payload,
            error=str(detail) if detail is not None else response.reason_phrase,
        )


def get_function_invoker() -> HttpFunctionInvoker:
    """FastAPI dependency returning the HTTP invoker for sibling functions."""
    return HttpFunctionInvoker()
