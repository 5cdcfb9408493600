"""
Identity Provider Client.

Verifies bearer tokens against the hosted auth service and returns the
caller's identity.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from errors import IdentityUnavailable, Unauthenticated

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    """Verified caller identity."""
    user_id: str
    email: Optional[str] = None


def bearer_token(header: Optional[str]) -> str:
    """
    Extract the token from an Authorization header.

    Raises:
        Unauthenticated: If the header is missing or carries no token
    """
    if not header or not header.strip():
        raise Unauthenticated("Missing auth")

    token = header.strip()
    scheme, _, rest = token.partition(' ')
    if scheme.lower() == 'bearer':
        token = rest.strip()

    if not token:
        raise Unauthenticated("Missing auth")
    return token


class AuthClient:
    """
    Client for the hosted identity service.

    Calls ``GET {url}/auth/v1/user`` with the caller's token and the
    service key, the way the hosted backend exposes "who is this token".
    """

    def __init__(self, url: str, service_key: str, timeout: int = 10):
        """
        Initialize the client.

        Args:
            url: Base URL of the identity service
            service_key: Service API key sent as the ``apikey`` header
            timeout: Request timeout in seconds
        """
        self.url = url.rstrip('/')
        self.service_key = service_key
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Open the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        logger.info("Auth client started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def verify_token(self, token: str) -> Identity:
        """
        Resolve a bearer token to an identity.

        Args:
            token: Access token presented by the caller

        Returns:
            Identity of the token's owner

        Raises:
            Unauthenticated: Token rejected by the provider
            IdentityUnavailable: Provider unreachable or failing
        """
        if not token:
            raise Unauthenticated("Missing auth")

        if not self._session:
            await self.start()

        headers = {
            'Authorization': f'Bearer {token}',
            'apikey': self.service_key
        }

        try:
            async with self._session.get(f"{self.url}/auth/v1/user", headers=headers) as response:
                if response.status in (401, 403, 404):
                    raise Unauthenticated("Invalid auth")
                if response.status >= 400:
                    logger.error(f"Identity provider returned status {response.status}")
                    raise IdentityUnavailable(
                        f"Identity provider returned status {response.status}"
                    )
                data = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            logger.error(f"Network error verifying token: {e}")
            raise IdentityUnavailable("Identity provider unreachable") from e
        except asyncio.TimeoutError as e:
            logger.error("Timeout verifying token")
            raise IdentityUnavailable("Identity provider timed out") from e
        except ValueError as e:
            logger.error(f"Identity provider sent an unreadable body: {e}")
            raise IdentityUnavailable("Identity provider sent an unreadable body") from e

        user = data.get('user', data) if isinstance(data, dict) else None
        if not user or not user.get('id'):
            raise Unauthenticated("Invalid auth")

        return Identity(user_id=str(user['id']), email=user.get('email'))
