import dataclasses
import logging

from screensync import config
from screensync.schemas.playlist import CloneResult, MutationResult
from screensync.schemas.trace import Failure, FailureCode, make_failure
from screensync.services import playlist_items
from screensync.services.control_plane import (
    ControlPlaneClient,
    ControlPlaneClientError,
    ControlPlaneError,
    ControlPlaneNotConfigured,
)
from screensync.services.playlist_items import ENCODING_ORDER, ItemEncoding, PlaylistEntry

logger = logging.getLogger(__name__)


def _transport_failure(exc: ControlPlaneError, what: str, code: FailureCode) -> Failure:
    if isinstance(exc, ControlPlaneNotConfigured):
        return make_failure(FailureCode.NOT_CONFIGURED, str(exc), recommendation="Configure the control-plane token")
    if isinstance(exc, ControlPlaneClientError):
        return make_failure(code, f"{what}: {exc}")
    return make_failure(FailureCode.TRANSPORT_ERROR, f"{what}: {exc}", recommendation="Retry once the control plane recovers")


def read_entries(client: ControlPlaneClient, playlist_id: int) -> list[PlaylistEntry]:
    playlist = client.get_playlist(playlist_id)
    return playlist_items.decode_items(playlist.get("items"))


def _replace_items(
    client: ControlPlaneClient,
    playlist_id: int,
    entries: list[PlaylistEntry],
) -> tuple[ItemEncoding | None, Failure | None]:
    """
    Submit the complete item list, trying each known encoding in turn.

    Only a 4xx moves on to the next encoding; a transient failure ends the
    attempt since the other encoding would hit the same outage.
    """
    rejections: list[str] = []
    for encoding in ENCODING_ORDER:
        payload = playlist_items.encode_items(entries, encoding, config.DEFAULT_ITEM_DURATION_SEC)
        try:
            client.replace_playlist_items(playlist_id, payload)
        except ControlPlaneClientError as exc:
            logger.info("playlist %s rejected %s encoding: %s", playlist_id, encoding.value, exc)
            rejections.append(f"{encoding.value}: {exc}")
            continue
        except ControlPlaneError as exc:
            return None, _transport_failure(exc, f"update playlist {playlist_id}", FailureCode.PLAYLIST_UPDATE_FAILED)
        logger.info("playlist %s updated with %s encoding (%s items)", playlist_id, encoding.value, len(entries))
        return encoding, None

    return None, make_failure(
        FailureCode.UNKNOWN_ITEM_FORMAT,
        f"playlist {playlist_id} rejected every item encoding ({'; '.join(rejections)})",
        recommendation="Inspect the playlist item format accepted by the control plane",
    )


def _read_back(client: ControlPlaneClient, playlist_id: int) -> list[PlaylistEntry] | None:
    try:
        return read_entries(client, playlist_id)
    except ControlPlaneError as exc:
        logger.warning("read-back of playlist %s failed: %s", playlist_id, exc)
        return None


def append_media(
    client: ControlPlaneClient,
    playlist_id: int,
    media_id: int,
    duration: int | None = None,
) -> MutationResult:
    """
    Make sure `media_id` is in the playlist.

    When the media is already present nothing is written and `already_exists`
    is reported. Duplicates are collapsed only as part of a write that adds
    the media.
    """
    result = MutationResult(ok=False, playlist_id=playlist_id, media_id=media_id)
    try:
        entries = read_entries(client, playlist_id)
    except ControlPlaneError as exc:
        result.failure = _transport_failure(exc, f"fetch playlist {playlist_id}", FailureCode.PLAYLIST_FETCH_FAILED)
        return result

    result.item_count_before = len(entries)
    result.unrecognized_items = sum(1 for entry in entries if not entry.recognized)
    if playlist_items.contains_media(entries, media_id):
        logger.info("media %s already in playlist %s", media_id, playlist_id)
        result.ok = True
        result.already_exists = True
        result.item_count_after = len(entries)
        return result

    deduped, removed = playlist_items.dedupe_media(entries)
    result.removed_duplicates = removed
    target = deduped + [playlist_items.new_media_entry(media_id, duration or config.DEFAULT_ITEM_DURATION_SEC)]

    encoding, failure = _replace_items(client, playlist_id, target)
    if failure:
        result.failure = failure
        return result
    result.written = True
    result.format_used = encoding.value

    readback = _read_back(client, playlist_id)
    if not readback:
        # Writes lag on the control plane; an empty read is not proof of absence.
        logger.info("playlist %s read-back empty, trusting computed count %s", playlist_id, len(target))
        result.ok = True
        result.unconfirmed = True
        result.item_count_after = len(target)
        return result

    if not playlist_items.contains_media(readback, media_id):
        result.item_count_after = len(readback)
        result.failure = make_failure(
            FailureCode.VERIFY_FAILED,
            f"media {media_id} missing from playlist {playlist_id} after update",
        )
        return result

    result.ok = True
    result.item_count_after = len(readback)
    return result


def remove_media(client: ControlPlaneClient, playlist_id: int, media_id: int) -> MutationResult:
    result = MutationResult(ok=False, playlist_id=playlist_id, media_id=media_id)
    try:
        entries = read_entries(client, playlist_id)
    except ControlPlaneError as exc:
        result.failure = _transport_failure(exc, f"fetch playlist {playlist_id}", FailureCode.PLAYLIST_FETCH_FAILED)
        return result

    result.item_count_before = len(entries)
    result.unrecognized_items = sum(1 for entry in entries if not entry.recognized)
    if not playlist_items.contains_media(entries, media_id):
        result.ok = True
        result.item_count_after = len(entries)
        return result

    result.already_exists = True
    deduped, removed = playlist_items.dedupe_media(entries)
    result.removed_duplicates = removed
    target = [entry for entry in deduped if entry.media_id != media_id]

    encoding, failure = _replace_items(client, playlist_id, target)
    if failure:
        result.failure = failure
        return result
    result.written = True
    result.format_used = encoding.value

    readback = _read_back(client, playlist_id)
    if readback is None or (not readback and target):
        result.ok = True
        result.unconfirmed = True
        result.item_count_after = len(target)
        return result
    if playlist_items.contains_media(readback, media_id):
        result.item_count_after = len(readback)
        result.failure = make_failure(
            FailureCode.VERIFY_FAILED,
            f"media {media_id} still present in playlist {playlist_id} after removal",
        )
        return result

    result.ok = True
    result.item_count_after = len(readback)
    return result


def clone_playlist(
    client: ControlPlaneClient,
    template_id: int,
    name: str,
    workspace_id: int | None = None,
) -> CloneResult:
    """Create `name` and copy the template's full item set into it."""
    try:
        template_entries = read_entries(client, template_id)
    except ControlPlaneError as exc:
        return CloneResult(
            ok=False,
            failure=_transport_failure(exc, f"fetch template playlist {template_id}", FailureCode.PLAYLIST_FETCH_FAILED),
        )

    try:
        created = client.create_playlist(name, workspace_id=workspace_id)
    except ControlPlaneError as exc:
        return CloneResult(
            ok=False,
            failure=_transport_failure(exc, f"create playlist {name!r}", FailureCode.PROVISIONING_FAILED),
        )
    playlist_id = created.get("id")
    if not playlist_id:
        return CloneResult(
            ok=False,
            failure=make_failure(FailureCode.PROVISIONING_FAILED, f"control plane returned no id for playlist {name!r}"),
        )
    playlist_id = int(playlist_id)
    logger.info("created playlist %s %r from template %s", playlist_id, name, template_id)

    # Row ids belong to the template's rows.
    entries = [dataclasses.replace(entry, row_id=None) for entry in template_entries if entry.recognized]
    entries, _ = playlist_items.dedupe_media(entries)
    if entries:
        _, failure = _replace_items(client, playlist_id, entries)
        if failure:
            return CloneResult(ok=False, playlist_id=playlist_id, playlist_name=name, failure=failure)

    return CloneResult(ok=True, playlist_id=playlist_id, playlist_name=name, item_count=len(entries))
