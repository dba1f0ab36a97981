"""Batch sync engine - queues items and writes them to a Zotero library."""

import asyncio
import copy
import json
import logging
from typing import TYPE_CHECKING, Any, Coroutine, Dict, List, Optional, Set, Tuple

from shared.config import get_sync_config
from shared.models import BatchWriteResult, FailedRequest
from services.zotero_library.client import LibraryClient
from services.zotero_library.errors import BatchWriteError
from services.zotero_sync.notifications import NotificationService
from services.zotero_sync.uploader import FileUploader
from services.zotero_sync.write_token import create_write_token

if TYPE_CHECKING:
    from services.zotero_sync.items import Attachment, Item

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Owns the write queue and the bookkeeping for one library session.

    Every item bound to the same engine shares its queue, its template
    cache and its records of synchronized items, failed requests and
    uploads in flight.
    """

    def __init__(
        self,
        library: LibraryClient,
        uploader: Optional[FileUploader] = None,
        notification_service: Optional[NotificationService] = None,
        poll_interval: float = 1.0,
        debug: bool = False
    ):
        """
        Initialize the sync engine.

        Args:
            library: Client for the target library
            uploader: Transport for attachment file contents
            notification_service: Reports recovered failures
            poll_interval: Seconds between checks in wait_for_pending_uploads
            debug: Default for Item.debug on items bound to this engine
        """
        self.library = library
        self.uploader = uploader or FileUploader()
        self.notification_service = notification_service or NotificationService()
        self.poll_interval = poll_interval
        self.debug = debug

        # Library version observed in the last batch write response
        self.version = 0
        self.templates: Dict[Tuple[str, Optional[str]], Dict[str, Any]] = {}
        self._background_tasks: Set[asyncio.Task] = set()
        # Created on first use so it binds to the running loop
        self._drain_lock: Optional[asyncio.Lock] = None

        self.queue: List["Item"] = []
        self.pending_uploads: Dict[str, "Attachment"] = {}
        self.synchronized: List["Item"] = []
        self.failed_requests: List[FailedRequest] = []

    @classmethod
    def from_env(cls) -> "SyncEngine":
        """Build an engine for the library configured in the environment."""
        config = get_sync_config()
        return cls(
            LibraryClient.from_env(),
            poll_interval=config["poll_interval"],
            debug=config["debug"]
        )

    async def aclose(self) -> None:
        """Close the HTTP clients of the uploader and the library."""
        await self.uploader.aclose()
        await self.library.aclose()

    def reset(self) -> None:
        """Clear the queue and all records of synchronized, failed and pending items."""
        self.queue = []
        self.failed_requests = []
        self.synchronized = []
        self.pending_uploads = {}

    @staticmethod
    def create_write_token() -> str:
        """Return a fresh 32-character write token for one batch request."""
        return create_write_token()

    def enqueue(self, item: "Item") -> None:
        """Append an item to the queue; it is sent by the next send_all()."""
        self.queue.append(item)
        logger.debug(f"Queued {item.item_type} ({len(self.queue)} items waiting)")

    async def get_template(self, item_type: str, link_mode: Optional[str] = None) -> Dict[str, Any]:
        """Return a copy of the field template for an item type, downloading it once."""
        cache_key = (item_type, link_mode)
        if cache_key not in self.templates:
            self.templates[cache_key] = await self.library.get_template(item_type, link_mode)
        return copy.deepcopy(self.templates[cache_key])

    async def get_versions(self) -> Dict[str, int]:
        """Return the version of every item in the library, keyed by item key."""
        return await self.library.get_versions()

    async def get_modified_since(self, version: int) -> List[str]:
        """Return the keys of items modified after the given library version."""
        return await self.library.get_modified_since(version)

    async def send_all(self) -> List["Item"]:
        """
        Send every queued item to the server, batch by batch, until the queue is empty.

        Items queued while a batch is in flight (for example children
        waiting for a parent saved in that batch) are sent in the next
        iteration of the same call. Concurrent calls run one after the
        other; a call that finds the queue already drained sends nothing.

        Returns:
            Items successfully saved by this call, in the order they were sent

        Raises:
            BatchWriteError: If the server rejects a whole batch
        """
        if self._drain_lock is None:
            self._drain_lock = asyncio.Lock()

        async with self._drain_lock:
            return await self._drain()

    async def _drain(self) -> List["Item"]:
        sent_items = []

        while self.queue:
            version = await self.library.get_version()

            # Snapshot and clear in one step so items queued during I/O are kept
            batch, self.queue = self.queue, []
            if not batch:
                break
            data = [dict(item.data) for item in batch]

            logger.info(f"Sending batch of {len(batch)} items (library version {version})")
            message = await self.library.post(
                self.library.path("items"),
                data,
                headers={
                    "Zotero-Write-Token": self.create_write_token(),
                    "If-Unmodified-Since-Version": str(version)
                }
            )

            if message.version is not None:
                self.version = message.version

            if not message.ok:
                await self._reject_batch(data, message.status_code, message.error)

            result = BatchWriteResult.model_validate(message.data or {})

            for index, failure in sorted(result.failed.items()):
                logger.warning(
                    f"Item {index} of batch failed ({failure.code}): {failure.message}"
                )
                self.failed_requests.append(FailedRequest(
                    message=failure.message,
                    code=failure.code,
                    data=json.dumps(data[index])
                ))

            for index in sorted(result.unchanged):
                batch[index].dirty = False

            saved_version = message.version if message.version is not None else self.version
            for index, key in sorted(result.success.items()):
                item = batch[index]
                item.mark_saved(key, saved_version)
                sent_items.append(item)
                self.synchronized.append(item)
                item.emit_saved()

            logger.info(
                f"Batch complete: {len(result.success)} saved, {len(result.unchanged)} unchanged, "
                f"{len(result.failed)} failed"
            )

        return sent_items

    async def _reject_batch(self, data: List[Dict[str, Any]], status_code: int, error: Optional[str]):
        error_message = error or f"Batch write failed with status {status_code}"
        logger.error(f"Server rejected batch of {len(data)} items ({status_code}): {error_message}")

        for item_data in data:
            self.failed_requests.append(FailedRequest(
                message=error_message,
                code=status_code,
                data=json.dumps(item_data)
            ))

        await self.notification_service.send_batch_rejected_notification(
            status_code=status_code,
            error_message=error_message,
            item_count=len(data)
        )
        raise BatchWriteError(error_message, status_code=status_code)

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run a coroutine in the background, keeping a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def has_pending_uploads(self) -> bool:
        """Return True while any attachment upload is in flight."""
        return len(self.pending_uploads) > 0

    async def wait_for_pending_uploads(self) -> None:
        """Return once no attachment upload is in flight."""
        while self.has_pending_uploads():
            await asyncio.sleep(self.poll_interval)
