"""Client for the favourites-folder collection API.

Every request goes through :meth:`CollectionClient._request`, which turns the
transport outcome into one of three results: a decoded JSON document,
:class:`~bilisorter.errors.RateLimitedError` for HTTP 412, or
:class:`~bilisorter.errors.TransportError` for anything else that is not a
2xx JSON response.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from bilisorter.config.models import AuthSettings, HTTPSettings
from bilisorter.errors import (
    NotAuthenticatedError,
    RateLimitedError,
    SessionExpiredError,
    TransportError,
)
from bilisorter.policy import Action, Stage, decide
from bilisorter.state.models import Folder, Item

LOGGER = logging.getLogger(__name__)

NAV_PATH = "/x/web-interface/nav"
FOLDER_LIST_PATH = "/x/v3/fav/folder/created/list-all"
ITEM_LIST_PATH = "/x/v3/fav/resource/list"
MOVE_PATH = "/x/v3/fav/resource/move"
FOLDER_SORT_PATH = "/x/v3/fav/folder/sort"
FOLDER_EDIT_PATH = "/x/v3/fav/folder/edit"

ALREADY_IN_TARGET_CODE = 72010002
VIDEO_RESOURCE_TYPE = 2

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Credentials:
    """Session cookies sent with every collection request."""

    sessdata: str
    bili_jct: str = ""
    dede_user_id: str = ""

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> Optional["Credentials"]:
        """Return credentials from configuration, or ``None`` when not logged in."""
        if not settings.sessdata:
            return None
        return cls(
            sessdata=settings.sessdata,
            bili_jct=settings.bili_jct or "",
            dede_user_id=settings.dede_user_id or "",
        )

    def cookie_header(self) -> str:
        parts = [f"SESSDATA={self.sessdata}"]
        if self.bili_jct:
            parts.append(f"bili_jct={self.bili_jct}")
        if self.dede_user_id:
            parts.append(f"DedeUserID={self.dede_user_id}")
        return "; ".join(parts)


@dataclass(slots=True)
class AuthResult:
    """Outcome of the nav-endpoint login check."""

    logged_in: bool
    owner_id: Optional[str] = None
    username: Optional[str] = None


@dataclass(slots=True)
class ItemWindow:
    """Items fetched by one bounded run of pages.

    Attributes:
        items: Items in page order.
        total: Upstream item count (0 when never reported).
        has_more: Whether pages remain beyond ``next_page - 1``.
        next_page: First page not yet fetched.
    """

    items: list[Item] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
    next_page: int = 1


@dataclass(slots=True)
class ActionResult:
    """Outcome of a write request (move, sort, rename)."""

    success: bool
    error: Optional[str] = None
    code: Optional[int] = None


class CollectionClient:
    """Stateless request functions against the collection API."""

    def __init__(
        self,
        credentials: Optional[Credentials],
        *,
        http: HTTPSettings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Session cookies, or ``None`` when not logged in.
            http: Transport settings; defaults apply when omitted.
            client: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
            sleep: Coroutine used for pacing delays.
            rng: Random source used to pick sample pages.
        """
        self._credentials = credentials
        self._http = http or HTTPSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._http.timeout_seconds)
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "CollectionClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # Auth ---------------------------------------------------------------

    async def check_auth(self) -> AuthResult:
        """Return the login state; never raises."""
        if self._credentials is None:
            return AuthResult(logged_in=False)
        try:
            data = await self._request("GET", NAV_PATH, context="check_auth")
        except (TransportError, RateLimitedError) as exc:
            LOGGER.warning("Auth check failed: %s", exc)
            return AuthResult(logged_in=False)

        payload = data.get("data")
        if data.get("code") != 0 or not payload:
            LOGGER.info("Nav API reported code %s", data.get("code"))
            return AuthResult(logged_in=False)

        owner_id = self._credentials.dede_user_id or (
            str(payload["mid"]) if payload.get("mid") else None
        )
        return AuthResult(
            logged_in=bool(payload.get("isLogin")),
            owner_id=owner_id,
            username=payload.get("uname"),
        )

    async def resolve_owner(self) -> str:
        """Return the owner identity of the configured session.

        Raises:
            NotAuthenticatedError: If no session credential is configured.
            SessionExpiredError: If the credential does not resolve to a user.
        """
        if self._credentials is None:
            raise NotAuthenticatedError()
        auth = await self.check_auth()
        if not auth.logged_in or not auth.owner_id:
            raise SessionExpiredError()
        return auth.owner_id

    # Folders -----------------------------------------------------------

    async def fetch_folders(self, owner_id: str) -> list[Folder]:
        """Return every folder created by ``owner_id``, with empty samples."""
        data = await self._request(
            "GET", FOLDER_LIST_PATH, context="fetch_folders", params={"up_mid": owner_id}
        )
        payload = data.get("data")
        if data.get("code") != 0 or payload is None:
            raise TransportError(f"Failed to fetch folders: code {data.get('code')}")
        return [
            Folder(id=entry["id"], name=entry["title"], item_count=entry.get("media_count", 0))
            for entry in payload.get("list") or []
        ]

    async def fetch_folder_sample(
        self,
        folder: Folder,
        *,
        page_size: int = 20,
        max_titles: int = 10,
    ) -> list[str]:
        """Return up to ``max_titles`` titles from one uniformly random page.

        Raises:
            RateLimitedError: If the page request is rate limited.
            TransportError: If the page cannot be fetched.
        """
        if folder.item_count <= 0:
            return []
        total_pages = max(1, math.ceil(folder.item_count / page_size))
        page = self._rng.randint(1, total_pages)
        items, _, _ = await self.fetch_items_page(folder.id, page, page_size=page_size)
        return [item.title for item in items[:max_titles]]

    # Items --------------------------------------------------------------

    async def fetch_items_page(
        self, folder_id: int, page: int, *, page_size: int = 20
    ) -> tuple[list[Item], bool, int]:
        """Fetch one page of a folder.

        Returns:
            tuple[list[Item], bool, int]: Items, upstream ``has_more`` and ``total``.
        """
        data = await self._request(
            "GET",
            ITEM_LIST_PATH,
            context="fetch_items",
            params={"media_id": folder_id, "pn": page, "ps": page_size},
        )
        payload = data.get("data")
        if data.get("code") != 0 or payload is None:
            raise TransportError(f"Item list for folder {folder_id} page {page}: code {data.get('code')}")
        try:
            items = [_item_from_media(media) for media in payload.get("medias") or []]
        except (TypeError, ValueError, OverflowError) as exc:
            raise TransportError(f"Malformed item in folder {folder_id} page {page}: {exc}") from exc
        return items, bool(payload.get("has_more")), int(payload.get("total") or 0)

    async def fetch_items_window(
        self,
        folder_id: int,
        *,
        start_page: int = 1,
        max_pages: int = 3,
        page_size: int = 20,
        page_delay: float = 0.5,
        retry_delay: float = 3.0,
    ) -> ItemWindow:
        """Fetch up to ``max_pages`` pages starting at ``start_page``.

        A page that fails with a transport error ends the window early; the
        returned window then has ``has_more=True`` and ``next_page`` pointing
        at the failed page. A rate-limited page is retried once after
        ``retry_delay``.

        Raises:
            RateLimitedError: If the retry is rate limited too. ``partial``
                holds the window fetched so far, with the cursor on the
                rate-limited page.
        """
        window = ItemWindow(next_page=start_page, has_more=True)
        pages_fetched = 0

        while window.has_more and pages_fetched < max_pages:
            if pages_fetched:
                await self._sleep(page_delay)

            page = window.next_page
            attempt = 0
            while True:
                try:
                    items, has_more, total = await self.fetch_items_page(
                        folder_id, page, page_size=page_size
                    )
                    break
                except (RateLimitedError, TransportError) as exc:
                    attempt += 1
                    decision = decide(exc, Stage.PAGING, retries=1)
                    if decision.allows_retry(attempt):
                        LOGGER.warning(
                            "Page %s of folder %s rate limited; retrying in %ss",
                            page,
                            folder_id,
                            retry_delay,
                        )
                        await self._sleep(retry_delay)
                        continue
                    if decision.action is Action.PAUSE:
                        LOGGER.error("Page %s of folder %s failed: %s", page, folder_id, exc)
                        return window
                    if isinstance(exc, RateLimitedError):
                        LOGGER.error("Page %s of folder %s still rate limited after retry", page, folder_id)
                        raise RateLimitedError(exc.url, partial=window) from exc
                    raise

            if total > 0:
                window.total = total
            window.items.extend(items)
            window.has_more = has_more
            window.next_page = page + 1
            pages_fetched += 1

        return window

    # Writes -------------------------------------------------------------

    async def move_item(self, src_folder_id: int, dst_folder_id: int, resource_id: str) -> ActionResult:
        """Move one video between folders; "already in target" counts as success."""
        credentials = self._require_credentials()
        try:
            data = await self._request(
                "POST",
                MOVE_PATH,
                context="move_item",
                data={
                    "media_id": str(src_folder_id),
                    "target_media_id": str(dst_folder_id),
                    "resources": f"{resource_id}:{VIDEO_RESOURCE_TYPE}",
                    "csrf": credentials.bili_jct,
                },
            )
        except (TransportError, RateLimitedError) as exc:
            LOGGER.error("Move of %s failed: %s", resource_id, exc)
            return ActionResult(success=False, error=str(exc))
        return _action_result(data, accept=(0, ALREADY_IN_TARGET_CODE))

    async def sort_folders(self, folder_ids: Sequence[int]) -> ActionResult:
        """Reorder all folders; ``folder_ids`` lists every folder in the new order."""
        credentials = self._require_credentials()
        try:
            data = await self._request(
                "POST",
                FOLDER_SORT_PATH,
                context="sort_folders",
                params={"sort": ",".join(str(folder_id) for folder_id in folder_ids), "csrf": credentials.bili_jct},
                headers=self._space_headers(),
            )
        except (TransportError, RateLimitedError) as exc:
            LOGGER.error("Folder sort failed: %s", exc)
            return ActionResult(success=False, error=str(exc))
        return _action_result(data)

    async def rename_folder(self, folder_id: int, title: str) -> ActionResult:
        credentials = self._require_credentials()
        try:
            data = await self._request(
                "POST",
                FOLDER_EDIT_PATH,
                context="rename_folder",
                data={"media_id": str(folder_id), "title": title, "csrf": credentials.bili_jct},
                headers=self._space_headers(),
            )
        except (TransportError, RateLimitedError) as exc:
            LOGGER.error("Rename of folder %s failed: %s", folder_id, exc)
            return ActionResult(success=False, error=str(exc))
        return _action_result(data)

    # Internal helpers -------------------------------------------------

    def _require_credentials(self) -> Credentials:
        if self._credentials is None:
            raise NotAuthenticatedError()
        return self._credentials

    def _headers(self) -> dict[str, str]:
        headers = {
            "Referer": self._http.web_base,
            "Origin": self._http.web_base,
            "User-Agent": self._http.user_agent,
        }
        if self._credentials is not None:
            headers["Cookie"] = self._credentials.cookie_header()
        return headers

    def _space_headers(self) -> dict[str, str]:
        return {"Referer": self._http.space_base, "Origin": self._http.space_base}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        context: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        merged = self._headers()
        if headers:
            merged.update(headers)
        url = f"{self._http.api_base}{path}"
        try:
            response = await self._client.request(method, url, headers=merged, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"[{context}] {type(exc).__name__}: {exc}") from exc

        if response.status_code == 412:
            raise RateLimitedError(str(response.url))
        if not response.is_success:
            raise TransportError(
                f"[{context}] HTTP {response.status_code} from {response.url} - {response.text[:200]}"
            )
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            raise TransportError(
                f"[{context}] Expected JSON but got {content_type or 'no content type'} "
                f"from {response.url} - {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(f"[{context}] Malformed JSON from {response.url}") from exc
        if not isinstance(data, dict):
            raise TransportError(f"[{context}] Unexpected payload from {response.url}")
        return data


def _item_from_media(media: dict[str, Any]) -> Item:
    fav_time = media.get("fav_time")
    return Item(
        external_id=media.get("bvid") or str(media.get("id", "")),
        title=media.get("title") or "",
        cover_url=media.get("cover") or "",
        owner_name=(media.get("upper") or {}).get("name") or "",
        play_count=(media.get("cnt_info") or {}).get("play") or 0,
        favorited_at=datetime.fromtimestamp(fav_time, tz=timezone.utc) if fav_time else None,
        description=media.get("intro") or "",
        validity_flag=media.get("attr") or 0,
    )


def _action_result(data: dict[str, Any], accept: tuple[int, ...] = (0,)) -> ActionResult:
    code = data.get("code")
    if code in accept:
        return ActionResult(success=True)
    return ActionResult(success=False, error=data.get("message") or f"Error code: {code}", code=code)


__all__ = [
    "ALREADY_IN_TARGET_CODE",
    "ActionResult",
    "AuthResult",
    "CollectionClient",
    "Credentials",
    "ItemWindow",
]
