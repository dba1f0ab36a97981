"""Notification utilities for sync failures."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class NotificationService:
    """Reports failures that the sync engine recovers from locally."""

    def __init__(self, enabled: Optional[bool] = None, webhook_url: Optional[str] = None):
        """
        Initialize notification service.

        Args:
            enabled: Overrides ENABLE_NOTIFICATIONS when given
            webhook_url: Overrides NOTIFICATION_WEBHOOK_URL when given
        """
        if enabled is None:
            enabled = os.getenv("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_enabled = enabled
        self.notification_webhook = webhook_url or os.getenv("NOTIFICATION_WEBHOOK_URL")

    async def send_upload_failure_notification(
        self,
        item_key: str,
        filename: str,
        error_message: str
    ):
        """
        Send notification for an attachment upload that failed.

        Args:
            item_key: Key of the attachment item
            filename: Name of the local file
            error_message: The error message
        """
        message = (
            f"Attachment Upload Failed\n"
            f"Item Key: {item_key}\n"
            f"File: {filename}\n"
            f"Error: {error_message}\n"
        )
        await self._send(message, {
            "event": "upload_failed",
            "item_key": item_key,
            "filename": filename,
            "error": error_message
        })

    async def send_batch_rejected_notification(
        self,
        status_code: Optional[int],
        error_message: str,
        item_count: int
    ):
        """
        Send notification for a batch write the server rejected as a whole.

        Args:
            status_code: HTTP status code of the response
            error_message: The error message
            item_count: Number of items in the rejected batch
        """
        message = (
            f"Batch Write Rejected\n"
            f"Status: {status_code}\n"
            f"Items: {item_count}\n"
            f"Error: {error_message}\n"
        )
        await self._send(message, {
            "event": "batch_rejected",
            "status_code": status_code,
            "item_count": item_count,
            "error": error_message
        })

    async def _send(self, notification_message: str, payload: dict):
        if not self.notification_enabled:
            logger.info(f"Notifications disabled, skipping {payload['event']} notification")
            return

        logger.warning(f"SYNC FAILURE NOTIFICATION: {notification_message}")

        if self.notification_webhook:
            try:
                async with httpx.AsyncClient() as client:
                    await client.post(
                        self.notification_webhook,
                        json={"text": notification_message, **payload},
                        timeout=10.0
                    )
                logger.info(f"Notification sent for {payload['event']}")
            except Exception as e:
                logger.error(f"Failed to send notification: {e}")
