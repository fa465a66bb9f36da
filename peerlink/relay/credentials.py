"""
Traversal credential cache for the relay.
Periodically fetches TURN/STUN descriptors from an external provider and
serves the last good snapshot to JOIN_ROOM replies.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import requests

from peerlink.core.exceptions import CredentialError
from peerlink.core.logging import LoggerMixin
from peerlink.core.validation_utils import ValidationUtils


@dataclass(frozen=True)
class IceServerDescriptor:
    """One traversal server: URL(s) plus optional auth."""

    urls: Tuple[str, ...]
    username: Optional[str] = None
    credential: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IceServerDescriptor':
        urls = data['urls']
        if isinstance(urls, str):
            urls = [urls]
        return cls(urls=tuple(urls), username=data.get('username'), credential=data.get('credential'))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'urls': self.urls[0] if len(self.urls) == 1 else list(self.urls)}
        if self.username is not None:
            result['username'] = self.username
        if self.credential is not None:
            result['credential'] = self.credential
        return result


@dataclass(frozen=True)
class CredentialSnapshot:
    """Immutable set of descriptors; replaced wholesale on refresh."""

    ice_servers: Tuple[IceServerDescriptor, ...] = ()
    generated_at: Optional[float] = None

    def to_wire(self) -> List[Dict[str, Any]]:
        return [server.to_dict() for server in self.ice_servers]

    def __len__(self) -> int:
        return len(self.ice_servers)


def parse_credentials(payload: Any) -> Tuple[IceServerDescriptor, ...]:
    """Validate a provider payload (a list of descriptors, or {"iceServers": [...]}).

    Raises:
        CredentialError: malformed payload or empty list.
    """
    if isinstance(payload, dict) and 'iceServers' in payload:
        payload = payload['iceServers']
    if not isinstance(payload, list):
        raise CredentialError("Credential payload is not a list", {"type": type(payload).__name__})
    if not payload:
        raise CredentialError("Credential provider returned no servers")

    servers = []
    for index, descriptor in enumerate(payload):
        error = ValidationUtils.validate_ice_server(descriptor)
        if error:
            raise CredentialError(error, {"index": index})
        servers.append(IceServerDescriptor.from_dict(descriptor))
    return tuple(servers)


class CredentialCache(LoggerMixin):
    """Background-refreshed credential snapshot; readers never wait on a fetch."""

    def __init__(self, provider_url: Optional[str], refresh_interval: float = 1800,
                 fetch_timeout: float = 10,
                 fetcher: Optional[Callable[[], Awaitable[Any]]] = None):
        super().__init__()
        self.provider_url = provider_url
        self.refresh_interval = refresh_interval
        self.fetch_timeout = fetch_timeout
        self._fetcher = fetcher or self._fetch_from_provider
        self._uses_provider = fetcher is None
        self._snapshot = CredentialSnapshot()
        self._task: Optional[asyncio.Task] = None

        # Refresh statistics
        self.stats = {
            'successful_refreshes': 0,
            'failed_refreshes': 0,
            'last_error': None
        }

    def current(self) -> CredentialSnapshot:
        """Latest good snapshot (empty until the first successful fetch)."""
        return self._snapshot

    async def refresh(self) -> bool:
        """Fetch once; on any failure keep the previous snapshot."""
        if self._uses_provider and self.provider_url is None:
            self.log_warning(f"🔑 [Credentials] No credential provider configured; clients will use fallback STUN")
            return False

        try:
            payload = await self._fetcher()
            servers = parse_credentials(payload)
        except (CredentialError, requests.exceptions.RequestException, ValueError) as e:
            self._record_failure(e)
            return False

        self._snapshot = CredentialSnapshot(ice_servers=servers, generated_at=time.time())
        self.stats['successful_refreshes'] += 1
        self.log_info(f"🔑 [Credentials] Snapshot refreshed", {"servers": len(servers)})
        return True

    async def _fetch_from_provider(self) -> Any:
        """GET the provider URL in a worker thread and decode the JSON body."""
        loop = asyncio.get_running_loop()

        def make_request():
            response = requests.get(self.provider_url, timeout=self.fetch_timeout)
            response.raise_for_status()
            return response.json()

        return await loop.run_in_executor(None, make_request)

    def _record_failure(self, error: Exception):
        self.stats['failed_refreshes'] += 1
        self.stats['last_error'] = str(error)
        self.log_error(f"🔑 [Credentials] Refresh failed, keeping previous snapshot", {
            "error": str(error),
            "error_type": type(error).__name__,
            "kept_servers": len(self._snapshot)
        })

    async def _refresh_loop(self):
        while True:
            try:
                await self.refresh()
            except Exception as e:
                # Custom fetchers may raise anything; the next tick retries
                self._record_failure(e)
            await asyncio.sleep(self.refresh_interval)

    async def start(self):
        """Start the background refresh loop (first fetch runs immediately)."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._refresh_loop())
        self.log_info(f"🔑 [Credentials] Refresh loop started", {
            "interval_seconds": self.refresh_interval,
            "provider_configured": self.provider_url is not None
        })

    async def stop(self):
        """Cancel the refresh loop."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def get_status(self) -> Dict[str, Any]:
        """Get credential cache status."""
        return {
            'servers': len(self._snapshot),
            'generated_at': self._snapshot.generated_at,
            'refresh_running': self._task is not None and not self._task.done(),
            **self.stats
        }
