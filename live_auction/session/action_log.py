"""
Append-only audit log of operator actions.

Uses JSONL (JSON Lines) format where each line is one applied transition,
undos included. Unlike the session history (which shrinks on undo), this
log keeps everything the operator did, in order:
- Streaming writes without loading the entire file
- Human-readable trail for disputes after the auction
- CSV export for post-auction review
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ActionLogEntry:
    """One applied transition."""

    seq: int                  # 1-based position in the log
    session_id: str
    action: str               # START, SOLD, UNSOLD, DEFERRED, UNDO
    item: Optional[str]
    team: str
    price: int
    cursor: int               # Cursor after the transition
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            'seq': self.seq,
            'sessionId': self.session_id,
            'action': self.action,
            'item': self.item,
            'team': self.team,
            'price': self.price,
            'cursor': self.cursor,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ActionLogEntry':
        return cls(
            seq=data['seq'],
            session_id=data['sessionId'],
            action=data['action'],
            item=data.get('item'),
            team=data.get('team', ''),
            price=data.get('price', 0),
            cursor=data['cursor'],
            timestamp=datetime.fromisoformat(data['timestamp']),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> 'ActionLogEntry':
        return cls.from_dict(json.loads(json_str))


class ActionLog:
    """Append-only JSONL log for one session."""

    def __init__(self, filepath: Path):
        """
        Initialize action log.

        Args:
            filepath: Path to JSONL file
        """
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._next_seq = self.count() + 1

    def append(
        self,
        session_id: str,
        action: str,
        cursor: int,
        item: Optional[str] = None,
        team: str = '',
        price: int = 0
    ) -> ActionLogEntry:
        """Append one transition and return the written entry."""
        entry = ActionLogEntry(
            seq=self._next_seq,
            session_id=session_id,
            action=action,
            item=item,
            team=team,
            price=price,
            cursor=cursor,
            timestamp=utcnow(),
        )
        with open(self.filepath, 'a', encoding='utf-8') as f:
            f.write(entry.to_json() + '\n')
        self._next_seq += 1
        logger.debug(f"Logged #{entry.seq}: {action} {item or ''}")
        return entry

    def load_all(self) -> List[ActionLogEntry]:
        """
        Load the complete log.

        Returns empty list if file doesn't exist. Corrupt lines are logged
        and skipped.
        """
        if not self.filepath.exists():
            return []

        entries = []
        with open(self.filepath, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    entries.append(ActionLogEntry.from_json(line))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.error(f"Failed to parse action at line {line_num}: {e}")

        logger.debug(f"Loaded {len(entries)} actions from {self.filepath}")
        return entries

    def count(self) -> int:
        if not self.filepath.exists():
            return 0
        with open(self.filepath, 'r', encoding='utf-8') as f:
            return sum(1 for line in f if line.strip())

    def get_last(self) -> Optional[ActionLogEntry]:
        entries = self.load_all()
        return entries[-1] if entries else None

    def to_frame(self) -> pd.DataFrame:
        columns = ['seq', 'sessionId', 'action', 'item', 'team', 'price', 'cursor', 'timestamp']
        return pd.DataFrame([e.to_dict() for e in self.load_all()], columns=columns)

    def export_to_csv(self, output_path: Path) -> int:
        """
        Export the log to CSV.

        Returns:
            Number of exported rows
        """
        df = self.to_frame()
        if df.empty:
            logger.warning("No actions to export")
            return 0

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output_path, index=False)
        logger.info(f"Exported {len(df)} actions to {output_path}")
        return len(df)


def create_log_filepath(base_dir: Path, session_id: str) -> Path:
    """Path of the action log for a session."""
    return Path(base_dir) / f"auction_{session_id}.jsonl"
