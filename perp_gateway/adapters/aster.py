"""
Perp Gateway - Aster Perpetuals Adapter.

============================================================
PURPOSE
============================================================
Adapter for Aster (Binance-compatible futures API).

AUTHENTICATION:
- /fapi/v3/*  delegated-wallet signature (user, signer, nonce,
              signature appended to the business parameters)
- /fapi/v1/*  HMAC, for the endpoints not served by v3
              (leverage, margin type, open orders, cancels)

============================================================
"""

import logging
from typing import Any, Dict, Optional

from ..config import AsterConfig, TimeoutConfig
from ..errors import CredentialError
from ..signing import HmacSigner, WalletSigner, ensure_signed
from .binance import BinanceAdapter


logger = logging.getLogger(__name__)


WALLET_PREFIX = "/fapi/v3/"


class AsterAdapter(BinanceAdapter):
    """
    Aster perpetuals adapter.
    
    Requests are routed to the wallet signer or the HMAC signer
    by endpoint version.
    """
    
    EXCHANGE_INFO_PATH = "/fapi/v1/exchangeInfo"
    PRICE_PATH = "/fapi/v1/ticker/price"
    ORDER_PATH = "/fapi/v3/order"
    CANCEL_PATH = "/fapi/v1/order"
    CANCEL_ALL_PATH = "/fapi/v1/allOpenOrders"
    OPEN_ORDERS_PATH = "/fapi/v1/openOrders"
    POSITIONS_PATH = "/fapi/v3/positionRisk"
    ACCOUNT_PATH = "/fapi/v3/account"
    LEVERAGE_PATH = "/fapi/v1/leverage"
    MARGIN_TYPE_PATH = "/fapi/v1/marginType"
    
    TRIGGER_WORKING_TYPE = "CONTRACT_PRICE"
    
    def __init__(
        self,
        config: AsterConfig,
        timeout_config: Optional[TimeoutConfig] = None,
        wallet_signer: Optional[WalletSigner] = None,
        hmac_signer: Optional[HmacSigner] = None,
    ):
        """
        Initialize Aster adapter.
        
        Raises:
            CredentialError: Wallet credentials missing or invalid
        """
        self._config = config
        self._base_url = config.rest_url
        if wallet_signer is None:
            wallet = config.wallet_credentials
            logger.debug(f"Building wallet signer for {wallet!r}")
            wallet_signer = WalletSigner(
                wallet.user_address,
                wallet.signer_address,
                wallet.private_key,
                recv_window=config.recv_window,
            )
        self._wallet_signer = wallet_signer
        if hmac_signer is None and config.hmac_credentials is not None:
            keys = config.hmac_credentials
            hmac_signer = HmacSigner(keys.api_key, keys.api_secret, recv_window=config.recv_window)
        self._signer = hmac_signer
        super(BinanceAdapter, self).__init__(timeout_config)
    
    @property
    def exchange_id(self) -> str:
        return "aster"
    
    async def _signed(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        operation: str = "",
    ) -> Any:
        if path.startswith(WALLET_PREFIX):
            envelope = ensure_signed(self._wallet_signer.sign(params or {}))
        else:
            if self._signer is None:
                raise CredentialError(
                    f"ASTER_API_KEY / ASTER_API_SECRET required for {path}",
                    code="CREDENTIALS_MISSING",
                )
            envelope = ensure_signed(self._signer.sign(params or {}))
        return await self._dispatch(method, path, envelope.body, envelope.headers, envelope.parameters, operation)
