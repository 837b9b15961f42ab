from pydantic import BaseModel, Field


class ResolvedContent(BaseModel):
    media_ids: list[int] = Field(default_factory=list)
    widget_count: int = 0
    total_items: int = 0
    nested_playlist_count: int = 0
    nested_layout_count: int = 0

    def merge(self, other: "ResolvedContent") -> None:
        self.media_ids.extend(other.media_ids)
        self.widget_count += other.widget_count
        self.total_items += other.total_items
        self.nested_playlist_count += other.nested_playlist_count
        self.nested_layout_count += other.nested_layout_count

    @property
    def unique_media_ids(self) -> list[int]:
        return list(dict.fromkeys(self.media_ids))


class ScreenSource(BaseModel):
    source_type: str | None = None
    source_id: int | None = None
    source_name: str | None = None


class MediaDetail(BaseModel):
    id: int
    name: str
    type: str  # image | video | audio | other
    file_extension: str | None = None
    folder: str | None = None
    tags: list[str] = Field(default_factory=list)


class ScreenInventory(BaseModel):
    screen_id: int
    name: str
    workspace_id: int | None = None
    workspace_name: str | None = None
    screen_content: ScreenSource | None = None
    total_playlist_items: int = 0
    media_items_total: int = 0
    unique_media_ids: int = 0
    widget_items_total: int = 0
    media_breakdown: dict[str, int] = Field(
        default_factory=lambda: {"video": 0, "image": 0, "audio": 0, "other": 0}
    )
    media: list[MediaDetail] = Field(default_factory=list)


class TopMedia(BaseModel):
    media_id: int
    name: str
    screen_count: int


class InventoryTotals(BaseModel):
    screens: int = 0
    total_items_all_screens: int = 0
    total_media_all_screens: int = 0
    unique_media_across_all_screens: int = 0
    top_media_by_screens: list[TopMedia] = Field(default_factory=list)


class InventoryResult(BaseModel):
    generated_at: str
    screens: list[ScreenInventory] = Field(default_factory=list)
    totals: InventoryTotals = Field(default_factory=InventoryTotals)
