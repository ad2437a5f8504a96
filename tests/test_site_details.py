import asyncio
from types import SimpleNamespace

import pytest

from dummies import DummyResult, DummySession
from sitesync.data.providers.site_details import get_site_details, list_active_clusters


def test_get_site_details_binds_exact_cluster_name():
    row = {"site": "CL-BER", "cm": "CM1", "type": "DID", "lowerbound": "1", "upperbound": "9", "prefix": "49"}
    session = DummySession([DummyResult(rows=[row])])

    rows = asyncio.run(get_site_details(session, "CL-BER"))

    assert rows == [row]
    sql, params = session.executed[0]
    assert params == {"cluster_name": "CL-BER"}
    assert "pc.name = :cluster_name" in sql
    assert "pnr.active = 1" in sql and "pc.active = 1" in sql


def test_get_site_details_no_rows_is_empty_list():
    session = DummySession([DummyResult(rows=[])])
    assert asyncio.run(get_site_details(session, "cl-ber")) == []


def test_get_site_details_propagates_database_errors():
    class BrokenSession(DummySession):
        async def execute(self, statement, params=None):
            raise RuntimeError("relation amsp.pbx_cluster does not exist")

    with pytest.raises(RuntimeError):
        asyncio.run(get_site_details(BrokenSession(), "CL-BER"))


def test_list_active_clusters_skips_nulls():
    rows = [SimpleNamespace(name="CL-A"), SimpleNamespace(name=None), SimpleNamespace(name="CL-B")]
    session = DummySession([DummyResult(rows=rows)])
    assert asyncio.run(list_active_clusters(session)) == ["CL-A", "CL-B"]
