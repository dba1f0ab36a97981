"""Zotero Web API client - authenticated reads and writes against one library."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from shared.config import get_library_config
from shared.models import ApiMessage
from services.zotero_library.errors import LibraryRequestError

logger = logging.getLogger(__name__)

API_VERSION = "3"


class LibraryClient:
    """Thin async wrapper around the Zotero Web API for a single library."""

    def __init__(
        self,
        library_id: str,
        api_key: str,
        library_type: str = "group",
        base_url: str = "https://api.zotero.org",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the library client.

        Args:
            library_id: Zotero group or user ID
            api_key: Zotero API key with write access to the library
            library_type: "group" or "user"
            base_url: API root URL
            timeout: Request timeout in seconds
            http_client: Optional preconfigured client (used in tests)
        """
        if library_type not in ("group", "user"):
            raise ValueError(f"Invalid library type: {library_type}")

        self.library_id = library_id
        self.library_type = library_type
        self.api_key = api_key
        self.library_prefix = f"/{library_type}s/{library_id}"
        self.headers = {
            "Zotero-API-Key": api_key,
            "Zotero-API-Version": API_VERSION,
        }
        self.client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_env(cls) -> "LibraryClient":
        """Build a client from ZOTERO_* environment variables."""
        config = get_library_config()
        return cls(
            library_id=config["library_id"],
            api_key=config["api_key"],
            library_type=config["library_type"],
            base_url=config["base_url"],
            timeout=config["timeout"]
        )

    async def __aenter__(self) -> "LibraryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def path(self, path: str) -> str:
        """Prefix a relative API path with the library prefix."""
        return f"{self.library_prefix}/{path.lstrip('/')}"

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> ApiMessage:
        """Issue an authenticated GET request."""
        return await self._request("GET", path, params=params, headers=headers)

    async def post(
        self,
        path: str,
        body: Any,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> ApiMessage:
        """
        Issue an authenticated POST request.

        String bodies are sent verbatim (form-encoded upload requests),
        anything else is serialized as JSON.
        """
        return await self._request("POST", path, params=params, headers=headers, body=body)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None
    ) -> ApiMessage:
        request_headers = dict(self.headers)
        if headers:
            request_headers.update({name: str(value) for name, value in headers.items()})

        kwargs: Dict[str, Any] = {"params": params, "headers": request_headers}
        if isinstance(body, (str, bytes)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Zotero API {method} {path} failed: {e}")
            raise

        message = self._to_message(response)
        if not message.ok:
            logger.warning(
                f"Zotero API {method} {path} returned {message.status_code}: {message.error}"
            )
        return message

    @staticmethod
    def _to_message(response: httpx.Response) -> ApiMessage:
        version_header = response.headers.get("Last-Modified-Version")
        version = int(version_header) if version_header else None

        data = None
        if response.content:
            if "application/json" in response.headers.get("Content-Type", ""):
                data = response.json()
            else:
                data = response.text

        ok = response.is_success
        return ApiMessage(
            ok=ok,
            status_code=response.status_code,
            data=data,
            version=version,
            error=None if ok else (response.text or response.reason_phrase)
        )

    async def get_version(self) -> int:
        """
        Return the current version of the library.

        The versions listing of top-level collections is the cheapest
        request that carries the Last-Modified-Version header.
        """
        message = await self.get(self.path("collections/top"), params={"format": "versions"})
        if not message.ok or message.version is None:
            raise LibraryRequestError(
                f"Could not determine library version: {message.error}",
                status_code=message.status_code
            )
        return message.version

    async def get_versions(self) -> Dict[str, int]:
        """Return the version of every item in the library, keyed by item key."""
        message = await self.get(self.path("items"), params={"format": "versions"})
        if not message.ok:
            raise LibraryRequestError(
                f"Could not list item versions: {message.error}",
                status_code=message.status_code
            )
        return message.data or {}

    async def get_modified_since(self, version: int) -> List[str]:
        """Return the keys of all items modified after the given library version."""
        message = await self.get(
            self.path("items"),
            params={"since": version, "format": "versions"},
            headers={"If-Modified-Since-Version": str(version)}
        )
        if message.status_code == 304:
            return []
        if not message.ok:
            raise LibraryRequestError(
                f"Could not list items modified since {version}: {message.error}",
                status_code=message.status_code
            )
        return list((message.data or {}).keys())

    async def get_template(self, item_type: str, link_mode: Optional[str] = None) -> Dict[str, Any]:
        """Download the empty field template for an item type."""
        params = {"itemType": item_type}
        if link_mode:
            params["linkMode"] = link_mode

        logger.debug(f"Downloading template for {item_type} (linkMode={link_mode})")
        message = await self.get("/items/new", params=params)
        if not message.ok:
            raise LibraryRequestError(
                f"Could not download template for {item_type}: {message.error}",
                status_code=message.status_code
            )
        return message.data
