"""Central test fixtures: in-memory stand-ins for PostgreSQL and the chain node."""

from typing import Any, Dict, List, Optional

import pytest

from attestation_indexer.checkpoints import CheckpointStore
from attestation_indexer.event_processor import EventProcessor
from attestation_indexer.models import RawLogEvent
from attestation_indexer.poller import StreamPoller
from attestation_indexer.resolver import AttestationResolver
from tests.factories import CONTRACT, empty_attestation

START_BLOCK = 100


class FakeDatabase:
    """Implements the DatabaseAdapter operations the indexer uses"""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.likes: Dict[str, Dict[str, Any]] = {}
        self.follows: Dict[str, Dict[str, Any]] = {}
        self.link_previews: Dict[str, Dict[str, Any]] = {}
        self.checkpoints: Dict[str, int] = {}
        self.fail_checkpoints = False

    async def ensure_user(self, user_id: str, created_at: int) -> bool:
        if user_id in self.users:
            return False
        self.users[user_id] = {'id': user_id, 'name': '', 'created_at': created_at}
        return True

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.users.get(user_id)

    async def set_username(self, user_id: str, name: str) -> bool:
        if user_id not in self.users:
            return False
        self.users[user_id]['name'] = name
        return True

    async def post_exists(self, post_id: str) -> bool:
        return post_id in self.posts

    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        return self.posts.get(post_id)

    async def create_post(self, post_data: Dict[str, Any]) -> bool:
        return self._insert(self.posts, post_data)

    async def create_like(self, like_data: Dict[str, Any]) -> bool:
        return self._insert(self.likes, like_data)

    async def create_follow(self, follow_data: Dict[str, Any]) -> bool:
        return self._insert(self.follows, follow_data)

    async def revoke_record(self, kind: str, attestation_id: str, revoked_at: int) -> bool:
        table = {'post': self.posts, 'like': self.likes, 'follow': self.follows}[kind]
        if attestation_id not in table:
            return False
        table[attestation_id]['revoked_at'] = revoked_at
        return True

    async def upsert_link_preview(self, preview_data: Dict[str, Any]):
        self.link_previews[preview_data['post_id']] = dict(preview_data)

    async def get_checkpoint(self, name: str) -> Optional[int]:
        return self.checkpoints.get(name)

    async def list_checkpoints(self) -> Dict[str, int]:
        return dict(self.checkpoints)

    async def upsert_checkpoint(self, name: str, block: int) -> int:
        if self.fail_checkpoints:
            raise ConnectionError("database unavailable")
        self.checkpoints[name] = max(self.checkpoints.get(name, block), block)
        return self.checkpoints[name]

    async def advance_existing_checkpoint(self, name: str, block: int) -> bool:
        if name not in self.checkpoints or self.checkpoints[name] >= block:
            return False
        self.checkpoints[name] = block
        return True

    @staticmethod
    def _insert(table: Dict[str, Dict[str, Any]], row: Dict[str, Any]) -> bool:
        if row['id'] in table:
            return False
        table[row['id']] = {**row, 'revoked_at': 0}
        return True


class FakeRPC:
    """Chain node serving a fixed set of logs and attestation records"""

    def __init__(self, block_number: int = START_BLOCK):
        self.block_number = block_number
        self.logs: List[RawLogEvent] = []
        self.records: Dict[str, str] = {}
        # uid -> number of reads that still return the empty record
        self.misses: Dict[str, int] = {}
        self.get_logs_calls: List[Dict[str, Any]] = []
        self.eth_calls = 0

    def add_log(self, log: RawLogEvent, record: Optional[str] = None, misses: int = 0):
        self.logs.append(log)
        if record is not None:
            self.records[log.uid] = record
        if misses:
            self.misses[log.uid] = misses
        self.block_number = max(self.block_number, log.block_number)

    async def get_block_number(self) -> int:
        return self.block_number

    async def get_logs(self, from_block, to_block, address=None, topics=None) -> List[RawLogEvent]:
        self.get_logs_calls.append({'from_block': from_block, 'to_block': to_block, 'topics': topics})
        matched = []
        for log in self.logs:
            if not from_block <= log.block_number <= to_block:
                continue
            if address and log.address != address.lower():
                continue
            if topics:
                if topics[0] and log.event_topic != topics[0]:
                    continue
                if len(topics) > 3 and topics[3] and log.schema_topic not in topics[3]:
                    continue
            matched.append(log)
        # Node order is not guaranteed to be log order
        return list(reversed(matched))

    async def eth_call(self, to: str, data: str) -> str:
        self.eth_calls += 1
        attestation_uid = "0x" + data[10:74]
        if self.misses.get(attestation_uid, 0) > 0:
            self.misses[attestation_uid] -= 1
            return empty_attestation()
        return self.records.get(attestation_uid, empty_attestation())


class RecordingPreviews:
    """Collects submitted link preview tasks"""

    def __init__(self):
        self.tasks = []

    def submit(self, task) -> bool:
        self.tasks.append(task)
        return True


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture
def previews() -> RecordingPreviews:
    return RecordingPreviews()


@pytest.fixture
def processor(db, previews) -> EventProcessor:
    return EventProcessor(db, previews)


@pytest.fixture
def checkpoints(db) -> CheckpointStore:
    return CheckpointStore(db, START_BLOCK)


@pytest.fixture
def resolver(rpc) -> AttestationResolver:
    return AttestationResolver(rpc, CONTRACT, poll_interval=0, max_attempts=3)


@pytest.fixture
def poller(rpc, resolver, processor, checkpoints) -> StreamPoller:
    return StreamPoller(rpc, resolver, processor, checkpoints, CONTRACT, concurrency=5)
