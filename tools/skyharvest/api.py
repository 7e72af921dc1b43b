"""Bluesky XRPC client – session creation, authenticated requests, blob download."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .config import BlueskyConfig
from .errors import AuthenticationError, DownloadError, NetworkError

logger = logging.getLogger("skyharvest.api")

CREATE_SESSION = "com.atproto.server.createSession"
GET_BLOB = "com.atproto.sync.getBlob"


@dataclass(frozen=True)
class Session:
    """An authenticated session.  Passed explicitly into every request."""
    did: str
    handle: str
    access_jwt: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_jwt}"}


class BlueskyAPI:
    """Thin wrapper around the handful of XRPC endpoints the harvester uses."""

    def __init__(self, cfg: BlueskyConfig | None = None, *, transport: httpx.BaseTransport | None = None) -> None:
        self.cfg = cfg or BlueskyConfig.from_env()
        self._client = httpx.Client(
            timeout=self.cfg.timeout,
            headers={"User-Agent": self.cfg.user_agent},
            follow_redirects=True,
            transport=transport,
        )

    def _url(self, path: str) -> str:
        return f"{self.cfg.api_base}/{path.lstrip('/')}"

    # ── session ──────────────────────────────────────────────────

    def login(self, identifier: str, password: str) -> Session:
        """Create a session with an app password."""
        try:
            resp = self._client.post(
                self._url(CREATE_SESSION),
                json={"identifier": identifier, "password": password},
            )
        except httpx.TransportError as exc:
            raise AuthenticationError(f"Login request failed: {exc}") from exc

        if not resp.is_success:
            raise AuthenticationError(f"Login failed: {resp.status_code} - {resp.text}")

        try:
            data = resp.json()
            session = Session(
                did=str(data["did"]),
                handle=str(data.get("handle") or identifier),
                access_jwt=str(data["accessJwt"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(f"Login response was not understood: {resp.text[:500]}") from exc

        logger.info("Logged in as %s (%s)", session.handle, session.did)
        return session

    # ── requests ─────────────────────────────────────────────────

    def request(
        self,
        session: Session,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> tuple[int, str]:
        """Send an authenticated request and return ``(status, body text)``.

        Status handling is left to the caller; only transport failures raise.
        """
        try:
            resp = self._client.request(
                method,
                self._url(path),
                params=params,
                json=json,
                headers=session.headers,
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        logger.debug("%s %s -> %d", method, path, resp.status_code)
        return resp.status_code, resp.text

    def blob_url(self, did: str, cid: str) -> str:
        return str(httpx.URL(self._url(GET_BLOB), params={"did": did, "cid": cid}))

    def download_blob(self, session: Session, did: str, cid: str) -> bytes:
        """Fetch the raw bytes of a blob from the author's repository."""
        try:
            resp = self._client.get(
                self._url(GET_BLOB),
                params={"did": did, "cid": cid},
                headers=session.headers,
            )
        except httpx.TransportError as exc:
            raise DownloadError(f"Blob {cid} download failed: {exc}") from exc
        if not resp.is_success:
            raise DownloadError(f"Blob {cid} download failed: HTTP {resp.status_code}")
        return resp.content

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BlueskyAPI:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
