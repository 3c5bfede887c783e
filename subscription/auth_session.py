"""
Authenticated backend access

AuthSession is the collaborator the engine talks to for every backend
call: it knows who is signed in and injects the bearer credentials.
HttpAuthSession is the httpx-backed implementation used by the app.
"""

from abc import ABC, abstractmethod
from typing import Optional, Any, Callable, Awaitable, Dict

import httpx

from subscription.exceptions import TransientError, ServerRejection, IntegrityError
from utils.logger import logger


class AuthSession(ABC):
    """Authenticated access to the subscription backend"""

    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        """Id of the signed-in user, or None when nobody is signed in"""
        pass

    @abstractmethod
    async def authorized_request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Perform an authenticated request and return the decoded JSON body.

        Raises:
            TransientError: on network failure or timeout
            ServerRejection: when the backend refuses the request
            IntegrityError: when the response body is not valid JSON
        """
        pass


TokenRefresher = Callable[[], Awaitable[Optional[str]]]


class HttpAuthSession(AuthSession):
    """
    AuthSession over httpx.

    A 401 response triggers one call to the token refresher followed by a
    single retry with the new token.
    """

    # Gateway errors mean the request never reached a decision
    RETRYABLE_STATUS_CODES = (502, 503, 504)

    def __init__(
        self,
        base_url: str,
        user_id: Optional[str] = None,
        access_token: Optional[str] = None,
        token_refresher: Optional[TokenRefresher] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._user_id = user_id
        self._access_token = access_token
        self._token_refresher = token_refresher
        self._transport = transport

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def sign_in(self, user_id: str, access_token: str) -> None:
        self._user_id = user_id
        self._access_token = access_token

    def sign_out(self) -> None:
        self._user_id = None
        self._access_token = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def authorized_request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None
    ) -> Any:
        response = await self._send(method, path, body)

        if response.status_code == 401 and self._token_refresher:
            logger.info("Access token rejected, refreshing once")
            new_token = await self._token_refresher()
            if new_token:
                self._access_token = new_token
                response = await self._send(method, path, body)

        return self._decode(method, path, response)

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]]
    ) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(
                    method.upper(),
                    url,
                    json=body,
                    headers=self._headers(),
                )
        except httpx.TimeoutException:
            logger.warning(f"{method.upper()} {path} timed out after {self.timeout}s")
            raise TransientError(f"Request timed out: {method.upper()} {path}")
        except httpx.TransportError as e:
            logger.warning(f"{method.upper()} {path} failed: {e}")
            raise TransientError(f"Network error: {e}")
        except httpx.DecodingError as e:
            logger.error(f"{method.upper()} {path} returned an undecodable body: {e}")
            raise IntegrityError(f"Response to {method.upper()} {path} could not be decoded")
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.warning(f"{method.upper()} {path} failed: {e}")
            raise TransientError(f"Request failed: {e}")

    def _decode(self, method: str, path: str, response: httpx.Response) -> Any:
        status = response.status_code

        if status in self.RETRYABLE_STATUS_CODES:
            raise TransientError(f"Service unavailable ({status}): {method.upper()} {path}")

        if status >= 400:
            message = self._error_message(response)
            logger.error(f"{method.upper()} {path} rejected ({status}): {message}")
            raise ServerRejection(message, status_code=status)

        if status == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            raise IntegrityError(f"Response to {method.upper()} {path} is not valid JSON")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
            if message:
                return str(message)

        text = response.text.strip()
        return text or f"Request failed with status {response.status_code}"
