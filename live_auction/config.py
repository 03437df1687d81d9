"""
Configuration constants for the live auction runtime.
"""

import os

# Auction Settings
MIN_TEAMS = 2
DEFAULT_BUDGET_PER_TEAM = 1000
DEFAULT_SHUFFLE_STRATEGY = 'random'  # 'random', 'tier-ordered' or 'custom-mix'

# External auction status values (set by the web app on the auction record)
STATUS_DRAFT = 'DRAFT'
STATUS_LIVE = 'LIVE'

# Storage
DATA_DIR = os.getenv('LIVE_AUCTION_DATA_DIR', 'data')
SESSIONS_DIR = os.path.join(DATA_DIR, 'sessions')        # Snapshots, teams, rounds
CONFIG_DIR = os.path.join(DATA_DIR, 'auctions')          # <session_id>.json pool/team config
ACTION_LOG_DIR = os.path.join(DATA_DIR, 'action_logs')   # JSONL audit trail

# Remote auction web API (used when --backend rest)
API_BASE_URL = os.getenv('LIVE_AUCTION_API_URL', 'http://localhost:3000')
API_KEY = os.getenv('LIVE_AUCTION_API_KEY')
HTTP_TIMEOUT = 10  # seconds per request

# Concurrency
TRANSITION_LOCK_TIMEOUT = 5.0   # seconds a second caller waits before being rejected
SIDE_EFFECT_TIMEOUT = 30.0      # seconds drain() waits for queued side effects

# Logging
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# ===== API SERVER CONFIGURATION =====

API_HOST = '127.0.0.1'
API_PORT = 8000

# ===== DRY RUN CONFIGURATION =====

DRY_RUN_SEED = 42
DRY_RUN_NUM_TEAMS = 4
DRY_RUN_POOL_SIZE = 45

# Synthetic tiers for the dry run: (tier_id, name, base_price, color)
DRY_RUN_TIERS = [
    ('platinum', 'Platinum', 150, '#E5E4E2'),
    ('gold', 'Gold', 100, '#FFD700'),
    ('silver', 'Silver', 50, '#C0C0C0'),
    ('bronze', 'Bronze', 20, '#CD7F32'),
]

# Probability of each operator action per round in the dry run
DRY_RUN_UNSOLD_RATE = 0.10
DRY_RUN_DEFER_RATE = 0.05
DRY_RUN_UNDO_RATE = 0.03
