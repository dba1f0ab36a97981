"""Zotero items - regular items, notes and file attachments."""

import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from shared.models import FailedRequest, UploadAuthorization
from services.zotero_library.errors import UploadError
from services.zotero_sync.engine import SyncEngine
from services.zotero_sync.uploader import file_md5

logger = logging.getLogger(__name__)

LINK_MODES = ("imported_file", "imported_url", "linked_file", "linked_url")

# Assigned by the server only
SERVER_FIELDS = ("key", "version")

UPLOAD_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "If-None-Match": "*"
}


class Item:
    """A model of a Zotero item bound to a sync engine."""

    def __init__(self, engine: SyncEngine, item_type: str, debug: Optional[bool] = None):
        """
        Initialize an unsaved item.

        Args:
            engine: Sync engine whose queue this item is saved through
            item_type: Zotero item type, e.g. "book" or "journalArticle"
            debug: Log a warning for every field dropped by set(),
                defaults to the engine setting

        Raises:
            ValueError: If item_type is empty or not a string
        """
        if not item_type or not isinstance(item_type, str):
            raise ValueError("Invalid argument: item type must be a non-empty string")

        self.engine = engine
        self.debug = engine.debug if debug is None else debug
        self.is_initialized = False
        self.saved = False
        # True while local changes have not been accepted by the server
        self.dirty = True
        self.data: Dict[str, Any] = {"itemType": item_type, "version": None, "key": None}
        self.parent: Optional["Item"] = None
        self._saved_callbacks: List[Callable[[str], Any]] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.item_type} key={self.key}>"

    @property
    def item_type(self) -> str:
        return self.data["itemType"]

    @property
    def key(self) -> Optional[str]:
        return self.data.get("key")

    @property
    def version(self) -> Optional[int]:
        return self.data.get("version")

    def _template_link_mode(self) -> Optional[str]:
        return None

    async def init(self) -> None:
        """Merge the item type's field template into data, keeping fields already set."""
        if self.is_initialized:
            return
        template = await self.engine.get_template(self.item_type, self._template_link_mode())
        self.data = {**template, **self.data}
        self.is_initialized = True

    async def set(self, fields: Dict[str, Any]) -> List[str]:
        """
        Set or change field values.

        Fields the item type does not have are ignored rather than
        rejected.

        Args:
            fields: Mapping of field name to new value

        Returns:
            Names of the fields that were dropped
        """
        if not self.is_initialized:
            await self.init()

        dropped = []
        changed = False
        for field, value in fields.items():
            if field in self.data and field not in SERVER_FIELDS:
                if self.data[field] != value:
                    self.data[field] = value
                    changed = True
            else:
                dropped.append(field)
                if self.debug:
                    logger.warning(f"{field} ('{value}') is not a valid field for type {self.item_type}")

        if changed:
            self.dirty = True
        return dropped

    def set_parent(self, item: "Item") -> None:
        if not isinstance(item, Item):
            raise TypeError("Parent must be an instance of Item")
        self.parent = item

    async def save(self, as_batch: bool = False) -> Optional["Item"]:
        """
        Save the item on the Zotero server.

        Args:
            as_batch: Only queue the item; it is sent by the next
                SyncEngine.send_all() call

        Returns:
            The first item saved by the resulting send, this item if a send
            already running saved it, or None if the item was only queued,
            is waiting for its parent to be saved or failed to save
        """
        if not self.is_initialized:
            await self.init()

        if self.saved and not self.dirty:
            logger.debug(f"{self!r} has no unsaved changes, not sending")
            return self

        if self.parent is not None:
            if self.parent.saved:
                self.data["parentItem"] = self.parent.key
            else:
                logger.debug(f"Deferring {self!r} until its parent is saved")
                self.parent.on_saved(self._enqueue_with_parent)
                return None

        self.engine.enqueue(self)
        if as_batch:
            return None

        sent_items = await self.engine.send_all()
        if sent_items:
            return sent_items[0]
        # Sent by a drain that was already running
        return self if self.saved and not self.dirty else None

    def _enqueue_with_parent(self, parent_key: str) -> None:
        # Runs inside the drain that saved the parent, which then sends this item
        self.data["parentItem"] = parent_key
        self.engine.enqueue(self)

    def on_saved(self, callback: Callable[[str], Any]) -> None:
        """
        Call callback with the item key once the item is saved.

        Callbacks fire once. If the item is already saved the callback
        runs immediately.
        """
        if self.saved:
            callback(self.key)
        else:
            self._saved_callbacks.append(callback)

    async def wait_until_saved(self) -> str:
        """Wait for the item to be saved and return its key."""
        future = asyncio.get_running_loop().create_future()

        def resolve(key: str) -> None:
            if not future.done():
                future.set_result(key)

        self.on_saved(resolve)
        return await future

    def mark_saved(self, key: str, version: int) -> None:
        self.data["key"] = key
        self.data["version"] = version
        self.saved = True
        self.dirty = False

    def emit_saved(self) -> None:
        callbacks, self._saved_callbacks = self._saved_callbacks, []
        for callback in callbacks:
            callback(self.key)


class Note(Item):
    """A standalone or child note."""

    def __init__(self, engine: SyncEngine, note: str, parent: Optional[Item] = None, debug: Optional[bool] = None):
        super().__init__(engine, "note", debug=debug)
        if parent is not None:
            self.set_parent(parent)
        self.data["note"] = note


class Attachment(Item):
    """
    A file attachment.

    Once the attachment item is saved, the file itself is uploaded
    through the Zotero file upload protocol: authorization, transfer to
    the returned URL, and registration of the upload.
    """

    def __init__(
        self,
        engine: SyncEngine,
        filepath: str,
        link_mode: str,
        parent: Optional[Item] = None,
        auto_upload: bool = True,
        debug: Optional[bool] = None
    ):
        """
        Initialize an attachment.

        Args:
            engine: Sync engine whose queue this item is saved through
            filepath: Path to an existing local file
            link_mode: One of LINK_MODES
            parent: Optional parent item
            auto_upload: Upload the file as soon as the attachment is saved

        Raises:
            ValueError: If link_mode is unknown or the file does not exist
            TypeError: If parent is not an Item
        """
        super().__init__(engine, "attachment", debug=debug)
        self.set_link_mode(link_mode)
        if parent is not None:
            self.set_parent(parent)
        self.set_filepath(filepath)

        self.filesize: Optional[int] = None
        self.mtime: Optional[int] = None
        self.md5: Optional[str] = None
        self._upload_requested = False
        self._upload_task: Optional[asyncio.Task] = None

        if auto_upload:
            self._upload_requested = True
            self.on_saved(self._start_upload)

    @property
    def link_mode(self) -> str:
        return self.data["linkMode"]

    @property
    def filename(self) -> str:
        return os.path.basename(self.filepath)

    def _template_link_mode(self) -> Optional[str]:
        return self.link_mode

    def set_link_mode(self, link_mode: str) -> None:
        if link_mode not in LINK_MODES:
            raise ValueError(f"Invalid link mode '{link_mode}', must be one of {', '.join(LINK_MODES)}")
        self.data["linkMode"] = link_mode

    def set_filepath(self, filepath: str) -> None:
        if not filepath or not isinstance(filepath, str) or not os.path.isfile(filepath):
            raise ValueError(f"File '{filepath}' is invalid or does not exist.")
        self.filepath = filepath
        self.data["filename"] = self.filename
        self.data["title"] = self.filename

    async def upload(self) -> Optional[bool]:
        """
        Upload the attachment file.

        If the attachment is not saved yet, the upload is scheduled to
        start when it is and None is returned. A file is uploaded at most
        once per attachment; later calls wait for that upload and return
        its result.

        Returns:
            True if the file was uploaded, False if the server already had
            it or the upload failed (see SyncEngine.failed_requests)
        """
        if not self.saved:
            if not self._upload_requested:
                self._upload_requested = True
                self.on_saved(self._start_upload)
            return None

        self._start_upload(self.key)
        return await asyncio.shield(self._upload_task)

    def _start_upload(self, key: str) -> None:
        if self._upload_task is not None:
            return
        # Registered before the task starts so the upload counts as pending right away
        self.engine.pending_uploads[key] = self
        self._upload_task = self.engine.spawn(self._run_upload())

    async def _run_upload(self) -> bool:
        key = self.key
        filename = self.filename
        library = self.engine.library
        file_path = library.path(f"items/{key}/file")

        try:
            stat = os.stat(self.filepath)
            self.filesize = stat.st_size
            self.mtime = int(stat.st_mtime * 1000)
            self.md5 = await asyncio.to_thread(file_md5, self.filepath)

            message = await library.post(
                file_path,
                urlencode({
                    "md5": self.md5,
                    "filename": filename,
                    "filesize": self.filesize,
                    "mtime": self.mtime
                }),
                headers=UPLOAD_HEADERS
            )
            if not message.ok:
                raise UploadError(
                    f"Upload authorization failed: {message.error}",
                    status_code=message.status_code
                )

            authorization = UploadAuthorization.model_validate(message.data or {})
            if authorization.exists:
                logger.info(f"File {filename} already exists on the server, skipping upload")
                return False

            await self.engine.uploader.upload_file(
                url=authorization.url,
                filepath=self.filepath,
                content_type=authorization.content_type,
                prefix=authorization.prefix.encode(),
                suffix=authorization.suffix.encode()
            )

            message = await library.post(
                file_path,
                urlencode({"upload": authorization.upload_key}),
                headers=UPLOAD_HEADERS
            )
            if not message.ok:
                raise UploadError(
                    f"Upload registration failed: {message.error}",
                    status_code=message.status_code
                )

            logger.info(f"Uploaded {filename} for attachment {key}")
            return True

        except Exception as e:
            logger.error(f"Upload of {filename} failed: {e}", exc_info=True)
            self.engine.failed_requests.append(FailedRequest(message=str(e), filename=filename))
            await self.engine.notification_service.send_upload_failure_notification(
                item_key=key,
                filename=filename,
                error_message=str(e)
            )
            return False

        finally:
            self.engine.pending_uploads.pop(key, None)
