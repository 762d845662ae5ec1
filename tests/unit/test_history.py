"""Unit tests for the history ledger."""

import csv
import io

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from src.beatfeed.errors import StoreError
from src.beatfeed.models.scheduler import HistoryStatus
from src.beatfeed.scheduler.history import (
    CSV_HEADER,
    MemoryHistoryLedger,
    RedisHistoryLedger,
    build_page,
    matches_search,
    source_display_name,
)
from tests.fixtures.data_fixtures import CHANNEL_URL, make_record


async def collect_csv(ledger) -> list[list[str]]:
    chunks = [chunk async for chunk in ledger.export_csv()]
    return list(csv.reader(io.StringIO(b"".join(chunks).decode("utf-8"))))


@pytest.mark.unit
class TestHelpers:
    """Tests for ledger helper functions."""

    def test_matches_search_fields(self):
        record = make_record(title="Dark Trap Beat", artist="Prod AI", source_url=CHANNEL_URL)
        assert matches_search(record, "trap")
        assert matches_search(record, "PROD")
        assert matches_search(record, "@prodbeats")
        assert matches_search(record, None)
        assert not matches_search(record, "drill")

    def test_source_display_name(self):
        assert source_display_name("abc", "channel") == "Channel: abc"
        assert source_display_name("abc", "playlist") == "Playlist: abc"
        assert source_display_name("abc", None) == "abc"

    @pytest.mark.parametrize(
        "total, page_size, expected_pages",
        [(0, 20, 0), (1, 20, 1), (20, 20, 1), (21, 20, 2), (45, 10, 5)],
    )
    def test_build_page_total_pages(self, total, page_size, expected_pages):
        page = build_page([], total, 1, page_size)
        assert page.total_pages == expected_pages
        assert page.current_page == 1


@pytest.mark.unit
class TestMemoryHistoryLedger:
    """Tests for the in-memory ledger."""

    @pytest_asyncio.fixture
    async def ledger(self):
        ledger = MemoryHistoryLedger()
        for minute in range(25):
            await ledger.record(
                make_record(
                    source_id="src-a" if minute % 2 == 0 else "src-b",
                    title=f"Beat {minute}",
                    minutes=minute,
                    source_type="playlist" if minute % 2 == 0 else "channel",
                )
            )
        return ledger

    @pytest.mark.asyncio
    async def test_query_newest_first(self, ledger):
        page = await ledger.query(page=1, page_size=5)

        assert [r.title for r in page.items] == ["Beat 24", "Beat 23", "Beat 22", "Beat 21", "Beat 20"]
        assert page.total == 25
        assert page.total_pages == 5

    @pytest.mark.asyncio
    async def test_query_later_page(self, ledger):
        page = await ledger.query(page=5, page_size=5)

        assert [r.title for r in page.items] == ["Beat 4", "Beat 3", "Beat 2", "Beat 1", "Beat 0"]
        assert page.current_page == 5

    @pytest.mark.asyncio
    async def test_query_past_last_page_is_empty(self, ledger):
        page = await ledger.query(page=9, page_size=5)

        assert page.items == []
        assert page.total == 25

    @pytest.mark.asyncio
    async def test_query_source_filter(self, ledger):
        page = await ledger.query(page=1, page_size=50, source_id="src-b")

        assert page.total == 12
        assert all(r.source_id == "src-b" for r in page.items)

    @pytest.mark.asyncio
    async def test_query_all_disables_filter(self, ledger):
        page = await ledger.query(page=1, page_size=50, source_id="all")
        assert page.total == 25

    @pytest.mark.asyncio
    async def test_query_search(self, ledger):
        page = await ledger.query(page=1, page_size=50, search="beat 1")

        # Beat 1 and Beat 10-19
        assert page.total == 11

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_insertion_order_newest_first(self):
        ledger = MemoryHistoryLedger()
        await ledger.record(make_record(title="first"))
        await ledger.record(make_record(title="second"))

        page = await ledger.query()
        assert [r.title for r in page.items] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_list_sources(self, ledger):
        sources = await ledger.list_sources()

        assert [(s.id, s.name) for s in sources] == [
            ("src-a", "Playlist: src-a"),
            ("src-b", "Channel: src-b"),
        ]

    @pytest.mark.asyncio
    async def test_list_sources_empty(self):
        assert await MemoryHistoryLedger().list_sources() == []

    @pytest.mark.asyncio
    async def test_export_csv(self, ledger):
        rows = await collect_csv(ledger)

        assert rows[0] == CSV_HEADER
        assert len(rows) == 26
        assert rows[1][3] == "Beat 24"
        assert rows[1][5] == "success"

    @pytest.mark.asyncio
    async def test_export_csv_escapes_quotes_and_commas(self):
        ledger = MemoryHistoryLedger()
        await ledger.record(
            make_record(
                title='Beat "Night, Vol. 2"',
                status=HistoryStatus.FAILED,
                error_detail="Track too short, skipped",
            )
        )

        rows = await collect_csv(ledger)

        assert rows[1][3] == 'Beat "Night, Vol. 2"'
        assert rows[1][7] == "Track too short, skipped"

    @pytest.mark.asyncio
    async def test_export_empty_ledger_has_header_only(self):
        rows = await collect_csv(MemoryHistoryLedger())
        assert rows == [CSV_HEADER]


@pytest.mark.unit
class TestRedisHistoryLedger:
    """Tests for the Redis ledger against a mocked client."""

    @pytest.fixture
    def ledger(self, mock_redis_client):
        return RedisHistoryLedger(mock_redis_client, prefix="beatfeed:")

    @pytest.mark.asyncio
    async def test_record_writes_record_and_indexes(self, ledger, mock_redis_client):
        record = make_record(source_id="src-a", minutes=3)

        await ledger.record(record)

        mock_redis_client.pipeline.assert_called_once_with(transaction=True)
        pipeline = mock_redis_client.pipeline.return_value
        key, payload = pipeline.set.call_args.args
        assert key == f"beatfeed:history:record:{record.id}"
        assert '"sourceId":"src-a"' in payload
        score = record.downloaded_at.timestamp()
        pipeline.zadd.assert_any_call("beatfeed:history:index", {record.id: score})
        pipeline.zadd.assert_any_call("beatfeed:history:source:src-a", {record.id: score})
        pipeline.hsetnx.assert_called_once_with("beatfeed:history:sources", "src-a", "playlist")
        pipeline.execute.assert_awaited_once()
        mock_redis_client.set.assert_not_called()
        mock_redis_client.zadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_connection_error(self, ledger, mock_redis_client):
        mock_redis_client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

        with pytest.raises(StoreError):
            await ledger.record(make_record())

    @pytest.mark.asyncio
    async def test_query_page_from_index(self, ledger, mock_redis_client):
        newest = make_record(title="Newest", minutes=5)
        older = make_record(title="Older", minutes=1)
        mock_redis_client.zcard.return_value = 42
        mock_redis_client.zrevrange.return_value = [newest.id.encode(), older.id]
        mock_redis_client.mget.return_value = [
            newest.model_dump_json(by_alias=True),
            older.model_dump_json(by_alias=True),
        ]

        page = await ledger.query(page=2, page_size=2)

        mock_redis_client.zrevrange.assert_called_once_with("beatfeed:history:index", 2, 3)
        mock_redis_client.mget.assert_called_once_with(
            [f"beatfeed:history:record:{newest.id}", f"beatfeed:history:record:{older.id}"]
        )
        assert [r.title for r in page.items] == ["Newest", "Older"]
        assert page.total == 42
        assert page.total_pages == 21
        assert page.current_page == 2

    @pytest.mark.asyncio
    async def test_query_uses_source_index(self, ledger, mock_redis_client):
        mock_redis_client.zcard.return_value = 0
        mock_redis_client.zrevrange.return_value = []

        page = await ledger.query(source_id="src-a")

        mock_redis_client.zcard.assert_called_once_with("beatfeed:history:source:src-a")
        assert page.items == []
        assert page.total_pages == 0

    @pytest.mark.asyncio
    async def test_query_with_search_scans_records(self, ledger, mock_redis_client):
        records = [make_record(title="Trap Beat", minutes=2), make_record(title="Drill Beat", minutes=1)]
        mock_redis_client.zrevrange.return_value = [r.id for r in records]
        mock_redis_client.mget.return_value = [r.model_dump_json(by_alias=True) for r in records]

        page = await ledger.query(search="drill")

        assert [r.title for r in page.items] == ["Drill Beat"]
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_query_connection_error(self, ledger, mock_redis_client):
        mock_redis_client.zcard.side_effect = RedisConnectionError("down")

        with pytest.raises(StoreError):
            await ledger.query()

    @pytest.mark.asyncio
    async def test_list_sources_decodes_bytes(self, ledger, mock_redis_client):
        mock_redis_client.hgetall.return_value = {b"src-b": b"channel", "src-a": "playlist"}

        sources = await ledger.list_sources()

        assert [(s.id, s.name) for s in sources] == [
            ("src-a", "Playlist: src-a"),
            ("src-b", "Channel: src-b"),
        ]

    @pytest.mark.asyncio
    async def test_export_csv_pages_through_index(self, ledger, mock_redis_client):
        record = make_record(title="Only Beat")
        mock_redis_client.zrevrange.side_effect = [[record.id], []]
        mock_redis_client.mget.return_value = [record.model_dump_json(by_alias=True)]

        rows = await collect_csv(ledger)

        assert rows[0] == CSV_HEADER
        assert [row[3] for row in rows[1:]] == ["Only Beat"]

    @pytest.mark.asyncio
    async def test_export_csv_connection_error(self, ledger, mock_redis_client):
        mock_redis_client.zrevrange.side_effect = RedisConnectionError("down")
        stream = ledger.export_csv()

        header = await anext(stream)
        assert header.decode("utf-8").startswith("ID,Source ID")

        with pytest.raises(StoreError):
            await anext(stream)
