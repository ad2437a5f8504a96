from types import SimpleNamespace


class _Mappings:
    def __init__(self, rows):
        self._rows = rows

    def all(self):
        return list(self._rows)


class DummyResult:
    def __init__(self, rows=None, scalar=None, rowcount=0):
        self._rows = list(rows or [])
        self._scalar = scalar
        self.rowcount = rowcount

    def fetchall(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None

    def scalar_one(self):
        return self._scalar

    def mappings(self):
        return _Mappings(self._rows)


class DummySession:
    """Records executed statements; ``results`` are handed out in order."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    async def execute(self, statement, params=None):
        self.executed.append((str(statement), dict(params or {})))
        if self.results:
            return self.results.pop(0)
        return DummyResult()

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


def job_row(**overrides):
    row = {
        "id": 1,
        "job_id": "00000000-0000-0000-0000-000000000001",
        "job_name": "SITE_SYNC_JOB",
        "status": "COMPLETED",
        "start_time": None,
        "end_time": None,
        "duration_ms": None,
        "records_processed": 0,
        "error_message": None,
        "api_response": None,
        "create_ts": None,
        "update_ts": None,
    }
    row.update(overrides)
    return SimpleNamespace(**row)
