"""
Content graph resolution.

A screen points at a playlist, layout, schedule or tag-based playlist; any of
those may nest the others. `ContentResolver` walks that graph depth-first and
flattens it to the media leaves that actually render.

One resolver instance is one run: it owns its visited sets and node caches,
so concurrent runs for different screens never share traversal state.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable

from screensync.schemas.content import (
    InventoryResult,
    InventoryTotals,
    MediaDetail,
    ResolvedContent,
    ScreenInventory,
    ScreenSource,
    TopMedia,
)
from screensync.services import playlist_items
from screensync.services.control_plane import ControlPlaneClient, ControlPlaneError

logger = logging.getLogger(__name__)

SCHEDULE = "schedule"


def normalize_source_type(value: Any) -> str | None:
    source_type = str(value or "").strip().lower()
    if not source_type:
        return None
    if source_type == SCHEDULE:
        return SCHEDULE
    kind = playlist_items.normalize_kind(source_type)
    return None if kind == playlist_items.UNKNOWN else kind


def screen_source(screen: dict | None) -> ScreenSource:
    content = (screen or {}).get("screen_content") or {}
    source_type = normalize_source_type(content.get("source_type")) or content.get("source_type")
    return ScreenSource(
        source_type=source_type,
        source_id=playlist_items.as_int(content.get("source_id")),
        source_name=content.get("source_name"),
    )


def _tag_names(raw_tags: Any) -> set[str]:
    names: set[str] = set()
    for tag in raw_tags or []:
        if isinstance(tag, dict):
            name = tag.get("name")
        else:
            name = tag
        if isinstance(name, str) and name.strip():
            names.add(name.strip().lower())
    return names


def _media_detail(media: dict) -> MediaDetail | None:
    media_id = playlist_items.as_int(media.get("id"))
    if media_id is None:
        return None
    origin = media.get("media_origin") or {}
    media_type = str(origin.get("type") or "").lower()
    folder = media.get("parent_folder") or {}
    return MediaDetail(
        id=media_id,
        name=media.get("name") or f"Media {media_id}",
        type=media_type if media_type in {"image", "video", "audio"} else "other",
        file_extension=media.get("file_extension"),
        folder=folder.get("name") if isinstance(folder, dict) else None,
        tags=sorted(_tag_names(media.get("tags"))),
    )


class ContentResolver:
    def __init__(self, client: ControlPlaneClient) -> None:
        self.client = client
        self.visited_playlists: set[int] = set()
        self.visited_layouts: set[int] = set()
        self.errors: list[str] = []
        self._playlists: dict[int, dict | None] = {}
        self._layouts: dict[int, dict | None] = {}
        self._schedules: dict[int, dict | None] = {}
        self._tagbased: dict[int, dict | None] = {}
        self._workspace_media: dict[int | None, list[dict]] = {}
        self.media_cache: dict[int, MediaDetail | None] = {}

    def _fetch(self, cache: dict, fetcher: Callable[[int], dict], node_type: str, node_id: int) -> dict | None:
        if node_id in cache:
            return cache[node_id]
        try:
            node = fetcher(node_id) or None
        except ControlPlaneError as exc:
            logger.warning("could not fetch %s %s: %s", node_type, node_id, exc)
            self.errors.append(f"{node_type} {node_id}: {exc}")
            node = None
        cache[node_id] = node
        return node

    def resolve(self, source_type: Any, source_id: Any) -> ResolvedContent:
        kind = normalize_source_type(source_type)
        if kind is None or source_id in (None, "", 0):
            if source_type:
                logger.info("skipping unsupported source type %r", source_type)
            return ResolvedContent()
        node_id = playlist_items.as_int(source_id)
        if node_id is None:
            logger.warning("skipping %s with malformed id %r", kind, source_id)
            self.errors.append(f"{kind} {source_id!r}: malformed id")
            return ResolvedContent()
        if kind == playlist_items.PLAYLIST:
            return self.resolve_playlist(node_id)
        if kind == playlist_items.LAYOUT:
            return self.resolve_layout(node_id)
        if kind == SCHEDULE:
            return self.resolve_schedule(node_id)
        if kind == playlist_items.TAGBASED:
            return self.resolve_tagbased(node_id)
        if kind == playlist_items.MEDIA:
            return ResolvedContent(media_ids=[node_id], total_items=1)
        logger.info("skipping unsupported source type %r", source_type)
        return ResolvedContent()

    def _resolve_entry(self, entry: playlist_items.PlaylistEntry, result: ResolvedContent) -> bool:
        """Fold one item into `result`. Returns False when the item was a skipped revisit."""
        kind = entry.kind
        if entry.resource_id is None or kind == playlist_items.UNKNOWN:
            logger.warning("skipping unrecognized item %r", entry.raw)
            return True
        if kind == playlist_items.MEDIA:
            result.media_ids.append(entry.resource_id)
        elif kind == playlist_items.WIDGET:
            result.widget_count += 1
        elif kind == playlist_items.PLAYLIST:
            if entry.resource_id in self.visited_playlists:
                logger.info("skipping visited playlist %s", entry.resource_id)
                return False
            result.merge(self.resolve_playlist(entry.resource_id))
            result.nested_playlist_count += 1
        elif kind == playlist_items.LAYOUT:
            if entry.resource_id in self.visited_layouts:
                logger.info("skipping visited layout %s", entry.resource_id)
                return False
            result.merge(self.resolve_layout(entry.resource_id))
            result.nested_layout_count += 1
        elif kind == playlist_items.TAGBASED:
            result.merge(self.resolve_tagbased(entry.resource_id))
        return True

    def resolve_playlist(self, playlist_id: int) -> ResolvedContent:
        if playlist_id in self.visited_playlists:
            logger.info("skipping visited playlist %s", playlist_id)
            return ResolvedContent()
        self.visited_playlists.add(playlist_id)

        playlist = self._fetch(self._playlists, self.client.get_playlist, "playlist", playlist_id)
        if not playlist:
            return ResolvedContent()

        result = ResolvedContent()
        for entry in playlist_items.decode_items(playlist.get("items")):
            if self._resolve_entry(entry, result):
                result.total_items += 1
        return result

    def resolve_layout(self, layout_id: int) -> ResolvedContent:
        if layout_id in self.visited_layouts:
            logger.info("skipping visited layout %s", layout_id)
            return ResolvedContent()
        self.visited_layouts.add(layout_id)

        layout = self._fetch(self._layouts, self.client.get_layout, "layout", layout_id)
        if not layout:
            return ResolvedContent()

        result = ResolvedContent()
        slots = [region.get("item") for region in layout.get("regions") or [] if isinstance(region, dict)]
        background = layout.get("background_audio")
        if isinstance(background, dict):
            slots.append(background.get("item"))
        for slot in slots:
            if not isinstance(slot, dict):
                continue
            self._resolve_entry(playlist_items.decode_entry(slot), result)
        return result

    def resolve_schedule(self, schedule_id: int) -> ResolvedContent:
        schedule = self._fetch(self._schedules, self.client.get_schedule, "schedule", schedule_id)
        if not schedule:
            return ResolvedContent()

        sources = [event.get("source") for event in schedule.get("events") or [] if isinstance(event, dict)]
        sources.append(schedule.get("filler_content"))

        result = ResolvedContent()
        for source in sources:
            if not isinstance(source, dict):
                continue
            source_type = normalize_source_type(source.get("source_type"))
            if source_type not in {playlist_items.PLAYLIST, playlist_items.LAYOUT}:
                logger.info("skipping schedule %s source type %r", schedule_id, source.get("source_type"))
                continue
            result.merge(self.resolve(source_type, source.get("source_id")))
        return result

    def _media_in_workspace(self, workspace_id: int | None) -> list[dict]:
        if workspace_id in self._workspace_media:
            return self._workspace_media[workspace_id]
        try:
            media = self.client.list_media(workspace_id=workspace_id)
        except ControlPlaneError as exc:
            logger.warning("could not list media for workspace %s: %s", workspace_id, exc)
            self.errors.append(f"workspace {workspace_id} media: {exc}")
            media = []
        media = [item for item in media if isinstance(item, dict)]
        for item in media:
            detail = _media_detail(item)
            if detail is not None:
                self.media_cache.setdefault(detail.id, detail)
        self._workspace_media[workspace_id] = media
        return media

    def resolve_tagbased(self, playlist_id: int) -> ResolvedContent:
        playlist = self._fetch(self._tagbased, self.client.get_tagbased_playlist, "tagbased playlist", playlist_id)
        if not playlist:
            return ResolvedContent()

        filter_tags = _tag_names(playlist.get("tags"))
        workspace_ids = [w.get("id") for w in playlist.get("workspaces") or [] if isinstance(w, dict)]
        if not workspace_ids:
            own = playlist.get("workspace")
            workspace_ids = [own.get("id") if isinstance(own, dict) else None]

        includes = playlist.get("includes") or {}
        excludes = playlist.get("excludes") or {}
        excluded = {m for m in map(playlist_items.as_int, excludes.get("media") or []) if m is not None}

        member_ids: list[int] = []
        if filter_tags:
            for workspace_id in workspace_ids:
                for media in self._media_in_workspace(workspace_id):
                    media_id = playlist_items.as_int(media.get("id"))
                    if media_id is not None and filter_tags & _tag_names(media.get("tags")):
                        member_ids.append(media_id)
        included = map(playlist_items.as_int, includes.get("media") or [])
        member_ids.extend(m for m in included if m is not None)
        if includes.get("playlists"):
            logger.info("tagbased playlist %s: included playlists are not expanded", playlist_id)

        media_ids = [m for m in dict.fromkeys(member_ids) if m not in excluded]
        return ResolvedContent(media_ids=media_ids, total_items=len(media_ids))

    def media_detail(self, media_id: int) -> MediaDetail | None:
        if media_id in self.media_cache:
            return self.media_cache[media_id]
        detail = None
        try:
            media = self.client.get_media(media_id)
            if media:
                detail = _media_detail(media)
        except ControlPlaneError as exc:
            logger.warning("could not fetch media %s: %s", media_id, exc)
            self.errors.append(f"media {media_id}: {exc}")
        self.media_cache[media_id] = detail
        return detail


def resolve_content(client: ControlPlaneClient, source_type: Any, source_id: Any) -> ResolvedContent:
    return ContentResolver(client).resolve(source_type, source_id)


def build_inventory(client: ControlPlaneClient, workspace_id: int | None = None) -> InventoryResult:
    """Resolve every control-plane screen and summarize what each one plays."""
    screens = client.list_screens(workspace_id=workspace_id)
    logger.info("building inventory for %s screens", len(screens))

    # Shared media cache across screens; graph state stays per screen.
    media_cache: dict[int, MediaDetail | None] = {}
    screen_count_by_media: Counter[int] = Counter()
    all_media: set[int] = set()
    inventories: list[ScreenInventory] = []

    for screen in screens:
        screen_id = playlist_items.as_int(screen.get("id")) if isinstance(screen, dict) else None
        if screen_id is None:
            logger.warning("skipping listed screen without a usable id: %r", screen)
            continue
        if "screen_content" not in screen:
            try:
                screen = client.get_screen(screen_id) or screen
            except ControlPlaneError as exc:
                logger.warning("could not fetch screen %s: %s", screen.get("id"), exc)

        source = screen_source(screen)
        resolver = ContentResolver(client)
        resolver.media_cache = media_cache
        resolved = resolver.resolve(source.source_type, source.source_id)

        unique_ids = resolved.unique_media_ids
        details: list[MediaDetail] = []
        breakdown = {"video": 0, "image": 0, "audio": 0, "other": 0}
        for media_id in unique_ids:
            all_media.add(media_id)
            screen_count_by_media[media_id] += 1
            detail = resolver.media_detail(media_id)
            if detail:
                details.append(detail)
                breakdown[detail.type] += 1

        workspace = screen.get("workspace") or {}
        inventories.append(
            ScreenInventory(
                screen_id=screen_id,
                name=screen.get("name") or f"Screen {screen_id}",
                workspace_id=workspace.get("id"),
                workspace_name=workspace.get("name"),
                screen_content=source if source.source_type else None,
                total_playlist_items=resolved.total_items,
                media_items_total=len(resolved.media_ids),
                unique_media_ids=len(unique_ids),
                widget_items_total=resolved.widget_count,
                media_breakdown=breakdown,
                media=details,
            )
        )

    top_media = []
    for media_id, count in sorted(screen_count_by_media.items(), key=lambda pair: (-pair[1], pair[0]))[:10]:
        detail = media_cache.get(media_id)
        top_media.append(
            TopMedia(media_id=media_id, name=detail.name if detail else f"Media {media_id}", screen_count=count)
        )

    return InventoryResult(
        generated_at=datetime.now(timezone.utc).isoformat(),
        screens=inventories,
        totals=InventoryTotals(
            screens=len(inventories),
            total_items_all_screens=sum(s.total_playlist_items for s in inventories),
            total_media_all_screens=sum(s.media_items_total for s in inventories),
            unique_media_across_all_screens=len(all_media),
            top_media_by_screens=top_media,
        ),
    )
