"""
HTTP client for the auction web API.

Implements both the persistence adapter and the configuration source
against the web app's routes:
- GET  /api/auctions/{id}          auction configuration (teams, tiers, players, status)
- GET  /api/auctions/{id}/state    {status, runtimeState}
- PUT  /api/auctions/{id}/state    {runtimeState, status?}
- PUT  /api/auctions/{id}/teams    {teams: [{id, name, budgetRemaining}]}
- POST /api/auctions/{id}/round    {playerId, tierId}
- DELETE /api/auctions/{id}/round
- GET  /api/auctions/{id}/bids     {roundId, playerId, bids} of the open round
"""

import logging
import time
from typing import Dict, Optional

import requests

from .. import config
from .adapters import ConfigNotFoundError, ConfigSource, PersistenceAdapter
from .models import AuctionConfig

logger = logging.getLogger(__name__)


class AuctionApiClient(PersistenceAdapter, ConfigSource):
    """Client for the auction web API."""

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        api_key: Optional[str] = None,
        timeout: int = config.HTTP_TIMEOUT,
        read_retries: int = 3
    ):
        """
        Initialize API client.

        Args:
            base_url: Web app root URL
            api_key: Bearer token for the API (optional)
            timeout: Request timeout in seconds
            read_retries: Attempts for GET requests; writes are attempted once
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.read_retries = read_retries

        # Session for connection pooling
        self.session = requests.Session()
        self.session.headers['Content-Type'] = 'application/json'
        if api_key:
            self.session.headers['Authorization'] = f'Bearer {api_key}'

    def _url(self, session_id: str, suffix: str = '') -> str:
        return f"{self.base_url}/api/auctions/{session_id}{suffix}"

    # ----- configuration source -----

    def fetch(self, session_id):
        response = self._get(self._url(session_id))
        if response.status_code == 404:
            raise ConfigNotFoundError(f"Auction not found: {session_id}")
        response.raise_for_status()

        data = response.json()
        data.setdefault('id', session_id)
        auction_config = AuctionConfig.from_dict(data)
        logger.info(
            f"Fetched auction {session_id}: {len(auction_config.teams)} teams, "
            f"{len(auction_config.items)} players, status {auction_config.auction_status}"
        )
        return auction_config

    # ----- persistence -----

    def load_snapshot(self, session_id):
        data = self._get_state(session_id)
        return data.get('runtimeState') if data else None

    def load_status(self, session_id):
        data = self._get_state(session_id)
        return data.get('status') if data else None

    def save_snapshot(self, session_id, snapshot, status=None):
        body: Dict = {'runtimeState': snapshot}
        if status:
            body['status'] = status
        self._send('PUT', self._url(session_id, '/state'), body)

    def save_teams(self, session_id, teams):
        body = {
            'teams': [
                {'id': team.get('id'), 'name': team['name'], 'budgetRemaining': team['coins']}
                for team in teams
            ]
        }
        self._send('PUT', self._url(session_id, '/teams'), body)

    def open_round(self, session_id, item_id, tier_id):
        response = self._send(
            'POST',
            self._url(session_id, '/round'),
            {'playerId': item_id, 'tierId': tier_id}
        )
        stored = response.json().get('round') or {}
        return {
            'sessionId': session_id,
            'roundId': stored.get('id'),
            'itemId': str(stored.get('player_id', item_id)),
            'tierId': stored.get('tier_id', tier_id),
            'status': stored.get('status', 'OPEN'),
            'openedAt': stored.get('opened_at'),
        }

    def close_round(self, session_id):
        response = self._send('DELETE', self._url(session_id, '/round'))
        closed = response.json().get('closed', 0)
        logger.debug(f"Closed {closed} open round(s) for {session_id}")

    def get_open_round(self, session_id):
        response = self._get(self._url(session_id, '/bids'))
        response.raise_for_status()
        data = response.json()
        if not data.get('roundId'):
            return None
        return {
            'sessionId': session_id,
            'roundId': data['roundId'],
            'itemId': str(data.get('playerId')),
            'status': 'OPEN',
        }

    # ----- HTTP helpers -----

    def _get_state(self, session_id: str) -> Optional[dict]:
        response = self._get(self._url(session_id, '/state'))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def _get(self, url: str) -> requests.Response:
        """
        GET with retries and exponential backoff.

        Raises:
            requests.RequestException: After all retries exhausted
        """
        for attempt in range(1, self.read_retries + 1):
            try:
                logger.debug(f"GET {url} (attempt {attempt}/{self.read_retries})")
                return self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning(f"Request failed (attempt {attempt}/{self.read_retries}): {e}")
                if attempt == self.read_retries:
                    raise
                time.sleep(2 ** attempt)

    def _send(self, method: str, url: str, body: Optional[dict] = None) -> requests.Response:
        """
        Single write request; failures surface to the caller, which logs them.

        Raises:
            requests.RequestException: On transport error or non-2xx status
        """
        logger.debug(f"{method} {url}")
        response = self.session.request(method, url, json=body, timeout=self.timeout)
        response.raise_for_status()
        return response

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
