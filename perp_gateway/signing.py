"""
Perp Gateway - Signing Engine.

============================================================
PURPOSE
============================================================
Produce venue-acceptable authenticated requests.

SCHEMES:
1. HMAC          - Binance / Aster v1: hex HMAC-SHA256 over the
                   insertion-ordered query string
2. OKX HMAC      - base64 HMAC-SHA256 over ts + METHOD + path + body
3. WALLET        - Aster v3: EIP-191 signature over
                   keccak(abi(json, user, signer, nonce))
4. L1 ACTION     - Hyperliquid: EIP-712 "Agent" signature over
                   keccak(msgpack(action) || nonce || vault)

CONTRACT:
- Constructors validate secret material (CredentialError)
- sign() never raises: SignedEnvelope or SigningFailure
- The string or dict that was signed is exactly what gets sent

============================================================
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Union
from urllib.parse import urlencode

import msgpack
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_utils import is_address, keccak, to_checksum_address, to_hex

from .errors import CredentialError, SigningError
from .logging_utils import mask_value
from .types import current_millis


logger = logging.getLogger(__name__)


Clock = Callable[[], int]


# ============================================================
# ENVELOPES
# ============================================================

@dataclass(frozen=True)
class SignedEnvelope:
    """
    Output of a successful signing operation.
    
    parameters holds the fields in the order they are transmitted;
    payload is the exact message the signature covers; body is
    the exact string/dict to put on the wire.
    """
    
    scheme: str
    parameters: Dict[str, Any]
    timestamp: int
    signature: Any
    signer_identity: str
    payload: Any
    body: Any
    nonce: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SigningFailure:
    """Signing could not be completed."""
    
    scheme: str
    reason: str


SigningResult = Union[SignedEnvelope, SigningFailure]


def ensure_signed(result: SigningResult) -> SignedEnvelope:
    """Unwrap a signing result, raising SigningError on failure."""
    if isinstance(result, SigningFailure):
        raise SigningError(
            f"{result.scheme} signing failed: {result.reason}",
            code="SIGNING_FAILED",
        )
    return result


# ============================================================
# HELPERS
# ============================================================

def _hmac_sha256_hexdigest(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _hmac_sha256_base64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def wire_value(value: Any) -> str:
    """Stringify a parameter value the way venues expect it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def encode_query(params: Mapping[str, Any]) -> str:
    """URL-encode params in insertion order. Never sorted."""
    return urlencode([(key, wire_value(value)) for key, value in params.items()])


def _require(value: Optional[str], name: str, scheme: str) -> str:
    if not value or not str(value).strip():
        raise CredentialError(f"{scheme}: {name} is required", code="CREDENTIALS_MISSING")
    return str(value).strip()


def _load_account(private_key: str, scheme: str):
    try:
        return Account.from_key(private_key)
    except Exception as e:
        raise CredentialError(f"{scheme}: invalid private key ({type(e).__name__})", code="CREDENTIALS_INVALID") from e


def _require_address(value: Optional[str], name: str, scheme: str) -> str:
    value = _require(value, name, scheme)
    if not is_address(value):
        raise CredentialError(f"{scheme}: {name} is not an address", code="CREDENTIALS_INVALID")
    return value


# ============================================================
# HMAC (Binance / Aster v1)
# ============================================================

class HmacSigner:
    """
    Binance-style HMAC signer.
    
    timestamp and recvWindow are appended when absent, the query
    string is built in insertion order and signature goes last.
    """
    
    scheme = "hmac"
    
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        recv_window: Optional[int] = 5000,
        clock: Clock = current_millis,
    ):
        self._api_key = _require(api_key, "api_key", self.scheme)
        self._api_secret = _require(api_secret, "api_secret", self.scheme)
        self._recv_window = recv_window
        self._clock = clock
    
    @property
    def api_key(self) -> str:
        return self._api_key
    
    def auth_headers(self) -> Dict[str, str]:
        return {"X-MBX-APIKEY": self._api_key}
    
    def sign(self, params: Optional[Mapping[str, Any]] = None) -> SigningResult:
        """
        Sign request parameters.
        
        Args:
            params: Business parameters, in the order they should appear
            
        Returns:
            SignedEnvelope whose body is "<query>&signature=<hex>"
        """
        try:
            ordered = {key: value for key, value in (params or {}).items() if value is not None}
            if "timestamp" not in ordered:
                ordered["timestamp"] = self._clock()
            if "recvWindow" not in ordered and self._recv_window:
                ordered["recvWindow"] = self._recv_window
            
            query = encode_query(ordered)
            signature = _hmac_sha256_hexdigest(self._api_secret, query)
        except (TypeError, ValueError) as e:
            return SigningFailure(self.scheme, str(e))
        
        transmitted = dict(ordered)
        transmitted["signature"] = signature
        return SignedEnvelope(
            scheme=self.scheme,
            parameters=transmitted,
            timestamp=int(ordered["timestamp"]),
            signature=signature,
            signer_identity=mask_value(self._api_key),
            payload=query,
            body=f"{query}&signature={signature}",
            headers=self.auth_headers(),
        )


# ============================================================
# OKX HMAC
# ============================================================

def okx_timestamp() -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class OkxSigner:
    """OKX V5 request signer."""
    
    scheme = "okx"
    
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        passphrase: str,
        simulated: bool = False,
        clock: Callable[[], str] = okx_timestamp,
    ):
        self._api_key = _require(api_key, "api_key", self.scheme)
        self._api_secret = _require(api_secret, "api_secret", self.scheme)
        self._passphrase = _require(passphrase, "passphrase", self.scheme)
        self._simulated = simulated
        self._clock = clock
    
    def sign(self, method: str, request_path: str, body: str = "") -> SigningResult:
        """
        Sign a request.
        
        Args:
            method: HTTP method
            request_path: Path including the query string for GET
            body: JSON body for POST, empty otherwise
        """
        try:
            timestamp = self._clock()
            message = f"{timestamp}{method.upper()}{request_path}{body or ''}"
            signature = _hmac_sha256_base64(self._api_secret, message)
            parsed_ts = datetime.strptime(timestamp, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
        except (TypeError, ValueError) as e:
            return SigningFailure(self.scheme, str(e))
        
        headers = {
            "OK-ACCESS-KEY": self._api_key,
            "OK-ACCESS-SIGN": signature,
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self._passphrase,
            "Content-Type": "application/json",
        }
        if self._simulated:
            headers["x-simulated-trading"] = "1"
        
        return SignedEnvelope(
            scheme=self.scheme,
            parameters={},
            timestamp=int(parsed_ts.replace(microsecond=0).timestamp()) * 1000 + parsed_ts.microsecond // 1000,
            signature=signature,
            signer_identity=mask_value(self._api_key),
            payload=message,
            body=body or "",
            headers=headers,
        )


# ============================================================
# DELEGATED WALLET (Aster v3)
# ============================================================

def wallet_message(params: Mapping[str, Any]) -> str:
    """
    Canonical JSON signed by the Aster v3 scheme.
    
    Keys sorted, values stringified, no whitespace, single quotes
    replaced by double quotes.
    """
    stringified = {key: wire_value(value) for key, value in params.items()}
    text = json.dumps(stringified, sort_keys=True, separators=(",", ":"))
    return "".join(text.split()).replace("'", '"')


class WalletSigner:
    """
    Aster v3 delegated-signer scheme.
    
    The signer wallet signs on behalf of user; timestamp and
    recvWindow are captured once and the same values are both
    signed (as strings) and transmitted (as integers).
    """
    
    scheme = "wallet"
    
    def __init__(
        self,
        user: str,
        signer: str,
        private_key: str,
        recv_window: int = 50000,
        clock: Clock = current_millis,
    ):
        self._user = _require_address(user, "user", self.scheme)
        self._signer = _require_address(signer, "signer", self.scheme)
        self._account = _load_account(_require(private_key, "private_key", self.scheme), self.scheme)
        self._recv_window = recv_window
        self._clock = clock
        
        if self._account.address.lower() != self._signer.lower():
            logger.warning(
                f"Aster signer address {self._signer} does not match private key address {self._account.address}"
            )
    
    @property
    def user(self) -> str:
        return self._user
    
    @property
    def signer(self) -> str:
        return self._signer
    
    def sign(self, params: Optional[Mapping[str, Any]] = None, nonce: Optional[int] = None) -> SigningResult:
        """
        Sign business parameters.
        
        Args:
            params: Business parameters (symbol, side, type, ...)
            nonce: Microsecond nonce; derived from the clock when omitted
        """
        try:
            timestamp = int(self._clock())
            if nonce is None:
                nonce = timestamp * 1000
            business = {key: value for key, value in (params or {}).items() if value is not None}
            
            signing_params = dict(business)
            signing_params["timestamp"] = str(timestamp)
            signing_params["recvWindow"] = str(self._recv_window)
            message = wallet_message(signing_params)
            
            encoded = abi_encode(
                ["string", "address", "address", "uint256"],
                [message, to_checksum_address(self._user), to_checksum_address(self._signer), nonce],
            )
            digest = keccak(encoded)
            signed = self._account.sign_message(encode_defunct(primitive=digest))
            signature = to_hex(signed.signature)
        except (TypeError, ValueError, OverflowError) as e:
            return SigningFailure(self.scheme, str(e))
        
        transmitted = {key: wire_value(value) for key, value in business.items()}
        transmitted["timestamp"] = timestamp
        transmitted["recvWindow"] = self._recv_window
        transmitted["user"] = self._user
        transmitted["signer"] = self._signer
        transmitted["nonce"] = nonce
        transmitted["signature"] = signature
        
        return SignedEnvelope(
            scheme=self.scheme,
            parameters=transmitted,
            timestamp=timestamp,
            signature=signature,
            signer_identity=self._signer,
            payload=message,
            body=encode_query(transmitted),
            nonce=nonce,
        )


# ============================================================
# L1 ACTION (Hyperliquid)
# ============================================================

L1_DOMAIN = {
    "chainId": 1337,
    "name": "Exchange",
    "verifyingContract": "0x0000000000000000000000000000000000000000",
    "version": "1",
}

L1_TYPES = {
    "Agent": [
        {"name": "source", "type": "string"},
        {"name": "connectionId", "type": "bytes32"},
    ],
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
}


def action_hash(action: Mapping[str, Any], vault_address: Optional[str], nonce: int) -> bytes:
    """keccak(msgpack(action) || nonce (8 bytes, big endian) || vault marker)."""
    data = msgpack.packb(action)
    data += nonce.to_bytes(8, "big")
    if vault_address is None:
        data += b"\x00"
    else:
        data += b"\x01" + bytes.fromhex(vault_address[2:] if vault_address.startswith("0x") else vault_address)
    return keccak(data)


def l1_typed_data(connection_id: bytes, is_mainnet: bool) -> Dict[str, Any]:
    """EIP-712 payload for the phantom agent."""
    return {
        "domain": L1_DOMAIN,
        "types": L1_TYPES,
        "primaryType": "Agent",
        "message": {
            "source": "a" if is_mainnet else "b",
            "connectionId": connection_id,
        },
    }


class L1ActionSigner:
    """
    Hyperliquid exchange-endpoint signer.
    
    The private key may be the master wallet or an approved agent
    (API) wallet; vault_address selects a sub-account or vault.
    """
    
    scheme = "l1_action"
    
    def __init__(
        self,
        private_key: str,
        is_mainnet: bool = True,
        vault_address: Optional[str] = None,
        clock: Clock = current_millis,
    ):
        self._account = _load_account(_require(private_key, "private_key", self.scheme), self.scheme)
        self._is_mainnet = is_mainnet
        if vault_address is not None:
            vault_address = _require_address(vault_address, "vault_address", self.scheme).lower()
        self._vault_address = vault_address
        self._clock = clock
    
    @property
    def address(self) -> str:
        return self._account.address
    
    @property
    def is_mainnet(self) -> bool:
        return self._is_mainnet
    
    def sign(
        self,
        action: Mapping[str, Any],
        nonce: Optional[int] = None,
        vault_address: Optional[str] = None,
    ) -> SigningResult:
        """
        Sign an exchange action.
        
        Args:
            action: Action dict in wire order (msgpack is order sensitive)
            nonce: Millisecond nonce; current time when omitted
            vault_address: Overrides the signer's default vault
        """
        vault = vault_address.lower() if vault_address else self._vault_address
        try:
            nonce = int(self._clock()) if nonce is None else nonce
            connection_id = action_hash(action, vault, nonce)
            structured = encode_typed_data(full_message=l1_typed_data(connection_id, self._is_mainnet))
            signed = self._account.sign_message(structured)
        except (TypeError, ValueError, OverflowError) as e:
            return SigningFailure(self.scheme, str(e))
        
        signature = {"r": to_hex(signed.r), "s": to_hex(signed.s), "v": signed.v}
        body: Dict[str, Any] = {
            "action": action,
            "nonce": nonce,
            "signature": signature,
        }
        if vault is not None:
            body["vaultAddress"] = vault
        
        return SignedEnvelope(
            scheme=self.scheme,
            parameters=dict(body),
            timestamp=nonce,
            signature=signature,
            signer_identity=self._account.address,
            payload=connection_id,
            body=body,
            nonce=nonce,
        )
