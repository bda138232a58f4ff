"""
Hacienda API client for Costa Rica electronic documents.

Handles OIDC token acquisition/refresh against the Hacienda IDP, document
reception, status consultation, confirmation forwarding and the public
taxpayer lookup. Every call carries an explicit timeout; failures surface as
HaciendaError subclasses and are never retried here.
"""
import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from app.core.config import Settings
from app.utils.error_responses import (
    HaciendaAuthenticationError,
    HaciendaError,
    HaciendaNetworkError,
    HaciendaRejectedError,
    HaciendaTimeoutError,
)

logger = logging.getLogger(__name__)

# Tokens are treated as expired slightly early so they never lapse in flight
TOKEN_EXPIRY_MARGIN = timedelta(seconds=10)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded; charset=utf-8"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenCache:
    """IDP token state owned by one client instance"""
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    refresh_expires_at: Optional[datetime] = None

    def access_valid(self, now: datetime) -> bool:
        return bool(self.access_token) and self.expires_at is not None and now < self.expires_at

    def refresh_valid(self, now: datetime) -> bool:
        return (
            bool(self.refresh_token)
            and self.refresh_expires_at is not None
            and now < self.refresh_expires_at
        )

    def update(self, token_response: Dict[str, Any], now: datetime) -> None:
        access_token = token_response.get("access_token")
        if not access_token:
            raise HaciendaAuthenticationError("No access token received from Hacienda")

        expires_in = int(token_response.get("expires_in", 300))
        refresh_expires_in = int(token_response.get("refresh_expires_in", 0))

        self.access_token = access_token
        self.expires_at = now + timedelta(seconds=expires_in) - TOKEN_EXPIRY_MARGIN
        self.refresh_token = token_response.get("refresh_token")
        self.refresh_expires_at = (
            now + timedelta(seconds=refresh_expires_in) - TOKEN_EXPIRY_MARGIN
            if self.refresh_token and refresh_expires_in
            else None
        )

    def clear(self) -> None:
        self.access_token = None
        self.expires_at = None
        self.refresh_token = None
        self.refresh_expires_at = None


class HaciendaClient:
    """
    Async HTTP client for the Hacienda reception API
    """

    def __init__(
        self,
        username: str,
        password: str,
        client_id: str,
        idp_url: str,
        api_url: str,
        taxpayer_url: str,
        timeout: float = 5.0,
        taxpayer_timeout: float = 5.0,
        callback_url: Optional[str] = None,
        token_cache: Optional[TokenCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.username = username
        self.password = password
        self.client_id = client_id
        self.idp_url = idp_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.taxpayer_url = taxpayer_url
        self.timeout = timeout
        self.taxpayer_timeout = taxpayer_timeout
        self.callback_url = callback_url
        self.token_cache = token_cache or TokenCache()
        self._transport = transport
        self._clock = clock
        # Serializes token refresh so concurrent callers share one IDP call
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "HaciendaClient":
        return cls(
            username=settings.HACIENDA_USERNAME,
            password=settings.HACIENDA_PASSWORD,
            client_id=settings.hacienda_client_id,
            idp_url=settings.hacienda_idp_url,
            api_url=settings.hacienda_api_url,
            taxpayer_url=settings.TAXPAYER_API_URL,
            timeout=settings.HACIENDA_TIMEOUT,
            taxpayer_timeout=settings.TAXPAYER_TIMEOUT,
            callback_url=settings.HACIENDA_CALLBACK_URL,
            transport=transport,
        )

    def _http_client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
            follow_redirects=True
        )

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        timeout: Optional[float] = None,
        error_class: type = HaciendaRejectedError,
        **kwargs
    ) -> httpx.Response:
        """
        Send one request and map transport failures to HaciendaError.

        Non-2xx answers raise ``error_class`` carrying the remote status and body.
        """
        try:
            async with self._http_client(timeout or self.timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Hacienda {operation} timed out: {e}")
            raise HaciendaTimeoutError(f"Hacienda {operation} timed out") from e
        except httpx.RequestError as e:
            logger.error(f"Network error during Hacienda {operation}: {e}")
            raise HaciendaNetworkError(f"Hacienda {operation} network error: {e}") from e

        if response.status_code >= 400:
            logger.warning(f"Hacienda {operation} failed with status {response.status_code}")
            raise error_class(
                f"Hacienda {operation} failed with status {response.status_code}",
                remote_status=response.status_code,
                remote_body=response.text
            )

        return response

    @staticmethod
    def _json_or_text(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # Token management

    async def _token_grant(self, data: Dict[str, str], operation: str) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.idp_url}/token",
            operation,
            error_class=HaciendaAuthenticationError,
            data=data,
            headers=FORM_HEADERS
        )
        token_response = self._json_or_text(response)
        if not isinstance(token_response, dict):
            raise HaciendaAuthenticationError("Unexpected token response from Hacienda")
        return token_response

    async def _password_grant(self) -> Dict[str, Any]:
        logger.info("Requesting new Hacienda access token")
        return await self._token_grant({
            "grant_type": "password",
            "client_id": self.client_id,
            "username": self.username,
            "password": self.password,
        }, "authentication")

    async def _refresh_grant(self, refresh_token: str) -> Dict[str, Any]:
        logger.info("Refreshing Hacienda access token")
        return await self._token_grant({
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "refresh_token": refresh_token,
        }, "token refresh")

    async def get_access_token(self) -> str:
        """Return a valid access token, refreshing or re-authenticating as needed."""
        async with self._token_lock:
            now = self._clock()
            if self.token_cache.access_valid(now):
                return self.token_cache.access_token

            if self.token_cache.refresh_valid(now):
                try:
                    token_response = await self._refresh_grant(self.token_cache.refresh_token)
                except HaciendaAuthenticationError:
                    logger.warning("Refresh token rejected, falling back to password grant")
                    self.token_cache.clear()
                    token_response = await self._password_grant()
            else:
                token_response = await self._password_grant()

            self.token_cache.update(token_response, self._clock())
            return self.token_cache.access_token

    async def logout(self) -> None:
        """End the IDP session and forget cached tokens."""
        async with self._token_lock:
            if not self.token_cache.refresh_token:
                self.token_cache.clear()
                return
            refresh_token = self.token_cache.refresh_token
            self.token_cache.clear()
            await self._request(
                "POST",
                f"{self.idp_url}/logout",
                "logout",
                error_class=HaciendaAuthenticationError,
                data={"client_id": self.client_id, "refresh_token": refresh_token},
                headers=FORM_HEADERS
            )
            logger.info("Logged out from Hacienda IDP")

    async def _authorized_request(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        access_token = await self.get_access_token()
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self._request(method, url, operation, headers=headers, **kwargs)
        except HaciendaRejectedError as e:
            if e.remote_status == 401:
                # Token no longer accepted; next call authenticates again
                self.token_cache.access_token = None
            raise

    # Reception API

    async def submit_document(
        self,
        document_key: str,
        signed_xml: str,
        issue_date: datetime,
        emitter: Dict[str, str],
        receiver: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Submit a signed document to Hacienda recepcion.

        Args:
            emitter/receiver: ``{"tipoIdentificacion", "numeroIdentificacion"}``

        Returns:
            Dict with the HTTP status, the Location header and any body
        """
        payload = {
            "clave": document_key,
            "fecha": issue_date.isoformat(),
            "emisor": emitter,
            "comprobanteXml": base64.b64encode(signed_xml.encode("utf-8")).decode("ascii"),
        }
        if receiver:
            payload["receptor"] = receiver
        if self.callback_url:
            payload["callbackUrl"] = self.callback_url

        logger.info(f"Submitting document {document_key} to Hacienda")
        response = await self._authorized_request(
            "POST", f"{self.api_url}/recepcion", "submission", json=payload
        )
        logger.info(f"Document {document_key} accepted for processing ({response.status_code})")

        return {
            "status_code": response.status_code,
            "location": response.headers.get("Location"),
            "body": self._json_or_text(response),
        }

    async def get_status(self, document_key: str) -> Dict[str, Any]:
        """
        Consult the processing status of a submitted document.

        Returns:
            Hacienda answer, including ``ind-estado`` and ``respuesta-xml``
        """
        response = await self._authorized_request(
            "GET", f"{self.api_url}/recepcion/{document_key}", "status query"
        )
        body = self._json_or_text(response)
        if not isinstance(body, dict):
            raise HaciendaError(
                "Unexpected status response from Hacienda",
                remote_status=response.status_code,
                remote_body=response.text
            )
        return body

    async def send_confirmation(self, url: str, token: str) -> Any:
        """
        Forward a confirmation request to ``url`` with the caller's bearer token.

        Returns:
            Raw gateway response body
        """
        response = await self._request(
            "POST",
            url,
            "confirmation",
            json={},
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )
        return self._json_or_text(response)

    async def lookup_taxpayer(self, identification: str) -> Any:
        """Public taxpayer (actividad economica) lookup. No authentication."""
        response = await self._request(
            "GET",
            self.taxpayer_url,
            "taxpayer lookup",
            timeout=self.taxpayer_timeout,
            params={"identificacion": identification}
        )
        return self._json_or_text(response)
