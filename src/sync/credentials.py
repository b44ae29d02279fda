"""Password to session-token exchange for protected rooms."""

import logging

import aiohttp

logger = logging.getLogger(__name__)

EXCHANGE_TIMEOUT = 5.0


class CredentialExchangeError(Exception):
    """The auth endpoint could not be reached or answered unexpectedly."""


class InvalidPasswordError(CredentialExchangeError):
    """The auth endpoint rejected the password (HTTP 401)."""


async def fetch_credential(
    api_url: str,
    room: str,
    password: str | None = None,
    session: aiohttp.ClientSession | None = None,
) -> str:
    """
    Exchange a room password for a session token.

    Args:
        api_url: API base URL (e.g. http://localhost:8081/api)
        room: Room key
        password: Room password
        session: Reuse an existing aiohttp session; a throwaway one is
                 created otherwise

    Returns:
        Session token for the room

    Raises:
        InvalidPasswordError: On HTTP 401
        CredentialExchangeError: On any other failure
    """
    url = f"{api_url.rstrip('/')}/rooms/auth"
    payload = {"key": room, "password": password or ""}

    if session is None:
        async with aiohttp.ClientSession() as own_session:
            return await _post_auth(own_session, url, payload)
    return await _post_auth(session, url, payload)


async def _post_auth(session: aiohttp.ClientSession, url: str, payload: dict) -> str:
    try:
        async with session.post(
            url, json=payload, timeout=aiohttp.ClientTimeout(total=EXCHANGE_TIMEOUT)
        ) as resp:
            if resp.status == 401:
                raise InvalidPasswordError(f"Invalid password for room {payload['key']}")
            if resp.status != 200:
                raise CredentialExchangeError(f"Auth endpoint returned HTTP {resp.status}")
            data = await resp.json()
    except (aiohttp.ClientError, TimeoutError, ValueError) as e:
        raise CredentialExchangeError(f"Auth request failed: {e}") from e

    token = data.get("token") if isinstance(data, dict) else None
    if not token:
        raise CredentialExchangeError("Auth response did not contain a token")

    logger.info(f"[Sync] Obtained session token for room {payload['key']}")
    return token
