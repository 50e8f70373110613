"""Asset library: in-memory view of a user's remote asset folders"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

import httpx

from data_uri import downscale_image, encode_data_uri, fetch_as_data_uri, sniff_mime_type
from errors import AssetNotFound, DeleteFailed, StoreError, UploadFailed
from models.asset import AssetCategory, AssetRecord, CategoryGroup, UploadFile, UploadReport

logger = logging.getLogger("TryOn_MCP")


class AssetLibrary:
    """Per-category ordered records mirroring the remote store for one category group.

    The remote store is the source of truth: records only become visible after
    the store confirms an upload, and only disappear after it confirms a delete.
    """

    def __init__(
        self,
        store,
        group: CategoryGroup,
        fetch_client: Optional[httpx.AsyncClient] = None,
        fetch_timeout: float = 30,
        max_upload_dim: Optional[int] = None,
    ):
        self.store = store
        self.group = group
        self.fetch_timeout = fetch_timeout
        self.max_upload_dim = max_upload_dim
        self._fetch_client = fetch_client
        self._records: Dict[AssetCategory, List[AssetRecord]] = {c: [] for c in group.categories}
        self._loaded: Set[AssetCategory] = set()
        # ids whose deletion the store confirmed; filtered out of every later listing
        self._tombstones: Dict[AssetCategory, Set[str]] = {c: set() for c in group.categories}
        self._deleting: Dict[AssetCategory, Set[str]] = {c: set() for c in group.categories}
        # (sequence, record) for uploads confirmed while a load may be in flight
        self._confirmed: Dict[AssetCategory, List[Tuple[int, AssetRecord]]] = {c: [] for c in group.categories}
        self._loads_in_flight: Dict[AssetCategory, Set[int]] = {c: set() for c in group.categories}
        self._sequence = 0
        # bumped by clear(); listings fetched under an older epoch are dropped
        self._epoch = 0

    def _check(self, category) -> AssetCategory:
        category = AssetCategory.parse(category)
        if category not in self.group:
            raise ValueError(f"Category '{category.value}' is not part of the '{self.group.name}' library")
        return category

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    # Queries

    def records(self, category) -> List[AssetRecord]:
        return list(self._records[self._check(category)])

    def is_loaded(self, category) -> bool:
        return self._check(category) in self._loaded

    def get(self, category, asset_id: str) -> AssetRecord:
        category = self._check(category)
        for record in self._records[category]:
            if record.asset_id == asset_id:
                return record
        raise AssetNotFound(category.value, asset_id)

    def selectable(self, category, asset_id: str) -> AssetRecord:
        """Return the record if it may be used as a generation input"""
        record = self.get(category, asset_id)
        if record.is_pending:
            raise AssetNotFound(self._check(category).value, asset_id)
        return record

    # Mutations

    async def load(self, category) -> List[AssetRecord]:
        """Replace the category's records with the remote listing.

        Concurrent loads never interleave: each swaps in a complete list when it
        finishes, so the last one to complete wins.
        """
        category = self._check(category)
        epoch = self._epoch
        started = self._next_sequence()
        self._loads_in_flight[category].add(started)
        try:
            items = await self.store.list(category)
            if epoch != self._epoch:
                logger.info(f"Dropping {category.value} listing fetched before the library was cleared")
                return []
            records = self._merge_listing(category, items, started)
        finally:
            self._loads_in_flight[category].discard(started)
            self._prune_confirmed(category)

        self._records[category] = records
        self._loaded.add(category)
        logger.info(f"Loaded {len(records)} record(s) into {category.value}")
        return list(records)

    async def load_all(self) -> Dict[str, Optional[Exception]]:
        """Load every category in the group; returns per-category errors (None on success)"""
        results = await asyncio.gather(
            *(self.load(category) for category in self.group.categories),
            return_exceptions=True,
        )
        outcome: Dict[str, Optional[Exception]] = {}
        for category, result in zip(self.group.categories, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Could not load {category.value}: {result}")
                outcome[category.value] = result
            else:
                outcome[category.value] = None
        return outcome

    async def add(self, category, files: Sequence[UploadFile]) -> UploadReport:
        """Upload files concurrently; each is appended only once its own upload is confirmed"""
        category = self._check(category)
        report = UploadReport()
        if not files:
            return report

        logger.info(f"Uploading {len(files)} file(s) to {category.value}")
        results = await asyncio.gather(
            *(self._upload_file(category, upload) for upload in files),
            return_exceptions=True,
        )
        for upload, result in zip(files, results):
            if isinstance(result, AssetRecord):
                report.added.append(result)
            elif isinstance(result, Exception):
                logger.warning(f"Upload of '{upload.file_name}' to {category.value} failed: {result}")
                report.errors.append(result)
            else:
                raise result
        logger.info(f"Upload to {category.value} complete: {len(report.added)} added, {len(report.errors)} failed")
        return report

    async def add_payload(self, category, file_name: str, data_uri: str) -> AssetRecord:
        """Upload an already-encoded image (e.g. a generation result) as one record.

        The record keeps the data URI so it can be reused as an input without a download.
        """
        return await self._upload_payload(self._check(category), file_name, data_uri, keep_inline=True)

    async def remove(self, category, asset_id: str) -> AssetRecord:
        """Delete from the remote store, then drop the record locally.

        Raises:
            AssetNotFound: The record is not (or no longer) in the category
            DeleteFailed: The store rejected the delete; the record stays visible
        """
        category = self._check(category)
        record = self.get(category, asset_id)
        if record.is_pending:
            raise DeleteFailed(asset_id, "asset has no remote handle")
        if asset_id in self._deleting[category]:
            raise DeleteFailed(asset_id, "a delete for this asset is already in progress")

        self._deleting[category].add(asset_id)
        try:
            await self.store.delete(record.remote_handle)
        except StoreError as e:
            logger.warning(f"Delete of {asset_id} from {category.value} failed: {e}")
            raise DeleteFailed(asset_id, e.message) from e
        finally:
            self._deleting[category].discard(asset_id)

        self._tombstones[category].add(asset_id)
        self._records[category] = [r for r in self._records[category] if r.asset_id != asset_id]
        logger.info(f"Removed {asset_id} ('{record.file_name}') from {category.value}")
        return record

    async def resolve_payload(self, category, asset_id: str) -> str:
        """Bytes of a confirmed record as a data URI, for transmission to generation.

        Raises:
            AssetNotFound: The record is missing or pending
            FetchFailed: The display URL could not be fetched
        """
        record = self.selectable(category, asset_id)
        if record.inline_payload:
            return record.inline_payload
        return await fetch_as_data_uri(record.display_url, self._fetch_client, self.fetch_timeout)

    def clear(self):
        """Drop all local state (sign-out)"""
        self._epoch += 1
        for category in self.group.categories:
            self._records[category] = []
            self._confirmed[category] = []
            self._tombstones[category] = set()
            self._deleting[category] = set()
            self._loads_in_flight[category] = set()
        self._loaded.clear()

    # Internals

    async def _upload_file(self, category: AssetCategory, upload: UploadFile) -> AssetRecord:
        data = upload.data
        mime_type = upload.mime_type or sniff_mime_type(data, upload.file_name)
        if self.max_upload_dim:
            try:
                data, mime_type = downscale_image(data, self.max_upload_dim, mime_type)
            except (OSError, ValueError) as e:
                raise UploadFailed(upload.file_name, f"not a readable image ({e})") from e
        return await self._upload_payload(category, upload.file_name, encode_data_uri(data, mime_type))

    async def _upload_payload(
        self, category: AssetCategory, file_name: str, data_uri: str, keep_inline: bool = False
    ) -> AssetRecord:
        try:
            item = await self.store.upload(category, file_name, data_uri)
        except StoreError as e:
            raise UploadFailed(file_name, e.message) from e
        except ValueError as e:
            raise UploadFailed(file_name, str(e)) from e

        record = AssetRecord(
            asset_id=item.item_id,
            display_url=item.link,
            file_name=file_name,
            remote_handle=item.item_id,
            inline_payload=data_uri if keep_inline else None,
        )
        self._append_confirmed(category, record)
        return record

    def _merge_listing(self, category: AssetCategory, items, started: int) -> List[AssetRecord]:
        tombstones = self._tombstones[category]
        records = [
            AssetRecord(asset_id=item.item_id, display_url=item.link, file_name=item.name, remote_handle=item.item_id)
            for item in items
            if item.item_id not in tombstones
        ]
        seen = {record.asset_id for record in records}
        # uploads confirmed after this listing was requested may be missing from it
        for sequence, record in self._confirmed[category]:
            if sequence > started and record.asset_id not in seen and record.asset_id not in tombstones:
                records.append(record)
                seen.add(record.asset_id)
        return records

    def _append_confirmed(self, category: AssetCategory, record: AssetRecord):
        if record.asset_id not in {r.asset_id for r in self._records[category]}:
            self._records[category].append(record)
        if self._loads_in_flight[category]:
            self._confirmed[category].append((self._next_sequence(), record))
        logger.debug(f"Confirmed {record.asset_id} in {category.value}")

    def _prune_confirmed(self, category: AssetCategory):
        in_flight = self._loads_in_flight[category]
        if not in_flight:
            self._confirmed[category] = []
        else:
            oldest = min(in_flight)
            self._confirmed[category] = [(s, r) for s, r in self._confirmed[category] if s > oldest]
