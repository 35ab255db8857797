from __future__ import annotations

from .cursor import CursorCodec
from .metadata import BackupRecordStore
from .models import BackupPage, BackupSearchFilter


class BackupQueryService:
    def __init__(self, *, store: BackupRecordStore, cursor_codec: CursorCodec) -> None:
        self.store = store
        self.cursor_codec = cursor_codec

    def search(self, search_filter: BackupSearchFilter) -> BackupPage:
        if search_filter.size < 1:
            raise ValueError("page size must be >= 1")

        cursor_at = self.cursor_codec.decode(search_filter.cursor) if search_filter.cursor else None
        records = self.store.search(search_filter, cursor_at, search_filter.size)

        last = records[-1] if records else None
        return BackupPage(
            content=tuple(records),
            next_cursor=self.cursor_codec.encode(last.started_at) if last else None,
            next_id_after=last.id if last else None,
            size=len(records),
            total_elements=self.store.count(search_filter),
            # A full page is reported as having more, even when it is the last one.
            has_next=len(records) == search_filter.size,
        )
