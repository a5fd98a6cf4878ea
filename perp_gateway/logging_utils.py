"""
Perp Gateway - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Structured request/response/order logging for adapters with
credential masking.

SECURITY REQUIREMENTS
- Never log raw API keys, secrets, private keys or signatures
- Mask sensitive headers (X-MBX-APIKEY, OK-ACCESS-*)
- Mask sensitive parameters, including nested action payloads

============================================================
"""

import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA
# ============================================================

SENSITIVE_HEADERS = {
    "authorization",
    "x-mbx-apikey",
    "ok-access-key",
    "ok-access-sign",
    "ok-access-passphrase",
}

SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "api_secret",
    "passphrase",
    "signature",
    "sign",
    "private_key",
    "privatekey",
    "r",
    "s",
}

# 0x-prefixed 32-byte hex (private keys, hashes)
_HEX_KEY_PATTERN = re.compile(r"0x[a-fA-F0-9]{64}")


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_value(value: Optional[str], show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the first few chars.
    
    Args:
        value: Value to mask
        show_chars: Number of chars to keep
        
    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Mask sensitive headers."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Mask sensitive parameters, recursing into nested mappings."""
    if not params:
        return {}
    
    masked: Dict[str, Any] = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value is not None else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        elif isinstance(value, str):
            masked[key] = _HEX_KEY_PATTERN.sub("0x***", value)
        else:
            masked[key] = value
    return masked


def mask_url(url: str) -> str:
    """Mask signature-like query parameters in a URL."""
    if not url:
        return url
    for param in ("signature", "sign", "apikey"):
        url = re.sub(f"({param}=)([^&]+)", r"\1***", url, flags=re.IGNORECASE)
    return url


# ============================================================
# LOG ENTRIES
# ============================================================

@dataclass
class RequestLogEntry:
    """Structured log entry for requests."""
    
    timestamp: str
    exchange_id: str
    operation: str
    method: str
    endpoint: str
    request_id: str
    headers: Dict[str, str] = None
    params: Dict[str, Any] = None
    body_hash: str = None
    
    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, default=str)


@dataclass
class ResponseLogEntry:
    """Structured log entry for responses."""
    
    timestamp: str
    exchange_id: str
    operation: str
    request_id: str
    status_code: int
    latency_ms: float
    success: bool
    error_message: str = None
    response_preview: str = None
    
    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, default=str)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# ADAPTER LOGGER
# ============================================================

class AdapterLogger:
    """
    Secure logger for adapter operations.
    
    Every entry passes through the masking functions above.
    """
    
    def __init__(self, exchange_id: str, logger_name: str = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(logger_name or f"perp_gateway.adapters.{exchange_id}")
        self._request_counter = 0
    
    def _generate_request_id(self) -> str:
        self._request_counter += 1
        return f"{self._exchange_id}-{self._request_counter}"
    
    @staticmethod
    def _hash_body(body: Any) -> Optional[str]:
        if not body:
            return None
        if isinstance(body, (dict, list)):
            body = json.dumps(body, sort_keys=True, default=str)
        if isinstance(body, str):
            body = body.encode()
        return hashlib.sha256(body).hexdigest()[:16]
    
    def log_request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        headers: Dict[str, str] = None,
        params: Dict[str, Any] = None,
        body: Any = None,
    ) -> str:
        """
        Log outgoing request.
        
        Returns:
            Request ID for correlation
        """
        request_id = self._generate_request_id()
        entry = RequestLogEntry(
            timestamp=_now_iso(),
            exchange_id=self._exchange_id,
            operation=operation,
            method=method,
            endpoint=mask_url(endpoint),
            request_id=request_id,
            headers=mask_headers(headers) or None,
            params=mask_params(params) or None,
            body_hash=self._hash_body(body),
        )
        self._logger.debug(f"REQUEST: {entry.to_json()}")
        return request_id
    
    def log_response(
        self,
        operation: str,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_message: str = None,
        response_body: Any = None,
    ) -> None:
        """Log incoming response (preview truncated to 200 chars)."""
        preview = None
        if response_body is not None:
            preview = (
                json.dumps(response_body, default=str)
                if isinstance(response_body, (dict, list))
                else str(response_body)
            )[:200]
        
        entry = ResponseLogEntry(
            timestamp=_now_iso(),
            exchange_id=self._exchange_id,
            operation=operation,
            request_id=request_id,
            status_code=status_code,
            latency_ms=round(latency_ms, 2),
            success=success,
            error_message=error_message[:200] if error_message else None,
            response_preview=preview,
        )
        if success:
            self._logger.debug(f"RESPONSE: {entry.to_json()}")
        else:
            self._logger.warning(f"RESPONSE_ERROR: {entry.to_json()}")
    
    def log_order(
        self,
        operation: str,
        instrument: str,
        side: str = None,
        size: str = None,
        price: str = None,
        status: str = None,
        order_id: str = None,
        error_message: str = None,
    ) -> None:
        """Log an order submission or cancellation outcome."""
        entry = {
            "timestamp": _now_iso(),
            "exchange_id": self._exchange_id,
            "operation": operation,
            "instrument": instrument,
            "side": side,
            "size": size,
            "price": price,
            "status": status,
            "order_id": order_id,
            "error_message": error_message[:200] if error_message else None,
        }
        payload = json.dumps({k: v for k, v in entry.items() if v is not None})
        if error_message:
            self._logger.warning(f"ORDER_ERROR: {payload}")
        else:
            self._logger.info(f"ORDER: {payload}")
    
    def info(self, message: str) -> None:
        self._logger.info(f"[{self._exchange_id}] {message}")
    
    def warning(self, message: str) -> None:
        self._logger.warning(f"[{self._exchange_id}] {message}")
    
    def error(self, message: str, exc_info: bool = False) -> None:
        self._logger.error(f"[{self._exchange_id}] {message}", exc_info=exc_info)
    
    def debug(self, message: str) -> None:
        self._logger.debug(f"[{self._exchange_id}] {message}")
