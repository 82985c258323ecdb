import pytest
from unittest.mock import MagicMock

from core.supabase_client import FILES_TABLE, FOLDERS_TABLE

QUERY_METHODS = ("select", "eq", "is_", "order", "insert", "update", "delete", "limit", "in_")


class FakeSupabase:
    """
    Stand-in for the sync supabase Client. Each table gets a chainable query mock;
    storage calls land on a single bucket mock. Only the attributes the app touches exist.
    """

    def __init__(self):
        self.tables = {FILES_TABLE: self._make_query(), FOLDERS_TABLE: self._make_query()}
        self.client = MagicMock()
        self.client.table.side_effect = lambda name: self.tables[name]
        self.bucket = MagicMock()
        self.client.storage.from_.return_value = self.bucket
        self.bucket.upload.side_effect = lambda path, file, file_options: MagicMock(path=path)
        self.bucket.remove.return_value = []
        self.set_user("user-123")

    @staticmethod
    def _make_query():
        query = MagicMock()
        for name in QUERY_METHODS:
            getattr(query, name).return_value = query
        query.execute.return_value = MagicMock(data=[])
        return query

    def query(self, table: str) -> MagicMock:
        return self.tables[table]

    def returns(self, table: str, data):
        self.tables[table].execute.return_value = MagicMock(data=data)
        self.tables[table].execute.side_effect = None

    def fails(self, table: str, error: Exception):
        self.tables[table].execute.side_effect = error

    def set_user(self, user_id):
        if user_id is None:
            self.client.auth.get_user.return_value = None
        else:
            self.client.auth.get_user.return_value = MagicMock(user=MagicMock(id=user_id))


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


def file_row(**overrides):
    row = {
        "id": "file-1",
        "name": "report.pdf",
        "type": "pdf",
        "size": 2621440,
        "modified": "2026-10-01T12:00:00+00:00",
        "starred": False,
        "path": "user-123/1700000000000_report.pdf",
        "user_id": "user-123",
        "folder_id": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_file_row():
    return file_row
