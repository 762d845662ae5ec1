"""History ledger endpoints: paginated queries, source filter list and CSV export."""

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from ..dependencies import HistoryLedgerDep, SettingsDep
from ..errors import StoreError
from ..models.responses import HistoryResponse, HistorySourcesResponse
from ..models.scheduler import utcnow
from ..scheduler import HistoryLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduler/history")


@router.get("", response_model=HistoryResponse)
async def get_history(
    ledger: HistoryLedgerDep,
    settings: SettingsDep,
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int | None = Query(None, ge=1, description="Records per page"),
    source: str = Query("all", description="Source id filter, or 'all'"),
    search: str | None = Query(None, description="Substring matched against title, artist and source URL"),
) -> HistoryResponse:
    """Paginated download history, newest first.

    Returns an empty page when the ledger cannot be read.
    """
    page_size = min(limit or settings.history.default_page_size, settings.history.max_page_size)
    search = search.strip() if search else None

    try:
        result = await ledger.query(page=page, page_size=page_size, source_id=source, search=search)
    except StoreError as e:
        logger.error(f"Failed to query history: {e}")
        return HistoryResponse(items=[], total=0, total_pages=0, current_page=page)

    return HistoryResponse(
        items=result.items,
        total=result.total,
        total_pages=result.total_pages,
        current_page=result.current_page,
    )


@router.get("/sources", response_model=HistorySourcesResponse)
async def get_history_sources(ledger: HistoryLedgerDep) -> HistorySourcesResponse:
    """Sources that appear in the history, for filter dropdowns."""
    try:
        sources = await ledger.list_sources()
    except StoreError as e:
        logger.error(f"Failed to list history sources: {e}")
        sources = []
    return HistorySourcesResponse(sources=sources)


async def _csv_stream(ledger: HistoryLedger) -> AsyncIterator[bytes]:
    """Ledger CSV stream that ends early instead of aborting on storage errors."""
    try:
        async for chunk in ledger.export_csv():
            yield chunk
    except StoreError as e:
        logger.error(f"History export truncated, ledger unavailable: {e}")


@router.get("/export")
async def export_history(ledger: HistoryLedgerDep) -> StreamingResponse:
    """Download the whole history as a CSV file.

    Ends after the rows read so far (at least the header) when the ledger
    becomes unavailable.
    """
    filename = f"track-history-{utcnow().strftime('%Y-%m-%d')}.csv"
    logger.info(f"Exporting history as {filename}")
    return StreamingResponse(
        _csv_stream(ledger),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
