"""
JSON file persistence for single-node deployments.

Each session gets a directory under the sessions root:
- state.json: {status, runtimeState, lastUpdated}
- teams.json: team budget records
- round.json: the open-round record (absent when no round is open)

Writes go to a temp file first and are atomically renamed, so a crash
never leaves a half-written file behind.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from .adapters import ConfigNotFoundError, ConfigSource, PersistenceAdapter, make_round_record
from .models import AuctionConfig, utcnow

logger = logging.getLogger(__name__)


def _write_json_atomic(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix('.tmp')
    with open(temp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    temp_path.replace(path)


def _read_json(path: Path):
    if not path.exists():
        return None
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


class JsonFileStore(PersistenceAdapter):
    """Persistence adapter writing one directory per session."""

    def __init__(self, base_dir: Path):
        """
        Initialize file store.

        Args:
            base_dir: Root directory for session directories
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def session_dir(self, session_id: str) -> Path:
        return self.base_dir / session_id

    def _state_file(self, session_id: str) -> Path:
        return self.session_dir(session_id) / 'state.json'

    def _round_file(self, session_id: str) -> Path:
        return self.session_dir(session_id) / 'round.json'

    def save_snapshot(self, session_id, snapshot, status=None):
        path = self._state_file(session_id)
        previous = _read_json(path) or {}
        record = {
            'status': status or previous.get('status'),
            'runtimeState': snapshot,
            'lastUpdated': utcnow().isoformat(),
        }
        _write_json_atomic(path, record)
        logger.debug(
            f"Saved snapshot for {session_id}: cursor {snapshot.get('auctionIndex')}"
            f"/{len(snapshot.get('auctionQueue', []))} -> {path}"
        )

    def load_snapshot(self, session_id):
        try:
            record = _read_json(self._state_file(session_id))
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to read snapshot for {session_id}: {e}")
            return None
        if not record:
            return None
        return record.get('runtimeState')

    def load_status(self, session_id):
        try:
            record = _read_json(self._state_file(session_id))
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to read status for {session_id}: {e}")
            return None
        return record.get('status') if record else None

    def save_teams(self, session_id, teams):
        _write_json_atomic(self.session_dir(session_id) / 'teams.json', teams)

    def open_round(self, session_id, item_id, tier_id):
        record = make_round_record(session_id, item_id, tier_id)
        _write_json_atomic(self._round_file(session_id), record)
        return record

    def close_round(self, session_id):
        path = self._round_file(session_id)
        if path.exists():
            path.unlink()

    def get_open_round(self, session_id):
        return _read_json(self._round_file(session_id))

    def clear(self, session_id: str) -> None:
        """
        Delete everything stored for a session.

        WARNING: This removes the snapshot. Use with caution.
        """
        directory = self.session_dir(session_id)
        if not directory.exists():
            return
        for path in directory.iterdir():
            path.unlink()
        directory.rmdir()
        logger.warning(f"Cleared session store: {directory}")


class JsonConfigSource(ConfigSource):
    """
    Reads auction configuration from <config_dir>/<session_id>.json.

    The file uses the web API auction shape (id, name, status,
    budgetPerTeam, teams, tiers, players). When a store is given, the
    status it recorded (e.g. LIVE after start) takes precedence.
    """

    def __init__(self, config_dir: Path, store: Optional[PersistenceAdapter] = None):
        self.config_dir = Path(config_dir)
        self.store = store

    def fetch(self, session_id):
        path = self.config_dir / f"{session_id}.json"
        if not path.exists():
            raise ConfigNotFoundError(f"Auction not found: {session_id} ({path})")

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        data.setdefault('id', session_id)

        auction_config = AuctionConfig.from_dict(data)
        if self.store is not None:
            stored_status = self.store.load_status(session_id)
            if stored_status:
                auction_config.auction_status = stored_status

        logger.debug(
            f"Loaded config {session_id}: {len(auction_config.teams)} teams, "
            f"{len(auction_config.items)} items, status {auction_config.auction_status}"
        )
        return auction_config
