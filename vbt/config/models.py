from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from vbt.domain.models import ItemOverrides, ProcessingMode

# UI label -> ffmpeg encoder id
ENCODER_MAP: Dict[str, str] = {
    "Standard (Slow, Best Quality)": "libx265",
    "NVIDIA GeForce (Fastest)": "hevc_nvenc",
    "NVIDIA GeForce (Legacy)": "h264_nvenc",
    "AMD Radeon (HEVC)": "hevc_amf",
    "AMD Radeon (H.264)": "h264_amf",
    "Intel QuickSync (HEVC)": "hevc_qsv",
    "Intel QuickSync (H.264)": "h264_qsv",
}

# UI label -> target width ("Original" = keep source width)
RESOLUTION_MAP: Dict[str, str] = {
    "Original Resolution": "Original",
    "4K (3840p)": "3840",
    "2K (1440p)": "2560",
    "Full HD (1080p)": "1920",
    "HD (720p)": "1280",
    "SD (480p)": "854",
    "Mobile (360p)": "640",
}

FPS_OPTIONS = ("Original", "60", "30", "24")

GIB = 1024 ** 3


class GeneralConfig(BaseModel):
    mode: ProcessingMode = ProcessingMode.CRF
    crf: int = Field(default=28, ge=0, le=51)
    encoder: str = "libx265"
    resolution: str = "Original"
    fps: str = "Original"
    strip_metadata: bool = False
    delete_original: bool = False
    output_format: str = ".mp4"
    target_size_mb: int = Field(default=25, gt=0)
    split_size_mb: int = Field(default=25, gt=0)
    low_disk_buffer_gb: float = Field(default=5.0, ge=0)
    reprocess_optimized: bool = False
    prevent_upsampling: bool = False
    extensions: list = Field(default_factory=lambda: [".mp4", ".mov", ".mkv", ".avi", ".webm", ".m4v", ".wmv", ".flv"])
    poll_interval_s: float = Field(default=2.0, gt=0)
    debug: bool = False

    @field_validator("encoder")
    @classmethod
    def resolve_encoder_label(cls, v: str) -> str:
        return ENCODER_MAP.get(v, v)

    @field_validator("resolution", mode="before")
    @classmethod
    def resolve_resolution_label(cls, v) -> str:
        v = str(v)
        v = RESOLUTION_MAP.get(v, v)
        if v != "Original" and not v.isdigit():
            raise ValueError(f"Invalid resolution {v!r}. Use a width in pixels or one of {sorted(RESOLUTION_MAP)}")
        return v

    @field_validator("fps", mode="before")
    @classmethod
    def validate_fps(cls, v) -> str:
        v = str(v)
        if v not in FPS_OPTIONS:
            raise ValueError(f"Invalid fps {v!r}. Must be one of {list(FPS_OPTIONS)}")
        return v

    @field_validator("output_format")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        v = v.strip().lower()
        return v if v.startswith(".") else f".{v}"

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: list) -> list:
        return [e.lower() if str(e).startswith(".") else f".{str(e).lower()}" for e in v]


class ItemOverridesConfig(BaseModel):
    """Per-file overrides keyed by file name under `items:`."""

    target_size_mb: Optional[int] = Field(default=None, gt=0)
    resolution: Optional[str] = None
    fps: Optional[str] = None
    start: float = Field(default=0.0, ge=0)
    end: Optional[float] = Field(default=None, gt=0)

    @field_validator("resolution", mode="before")
    @classmethod
    def resolve_resolution_label(cls, v) -> Optional[str]:
        if v is None:
            return v
        v = str(v)
        return RESOLUTION_MAP.get(v, v)

    @field_validator("fps", mode="before")
    @classmethod
    def validate_fps(cls, v):
        if v is None:
            return v
        v = str(v)
        if v not in FPS_OPTIONS:
            raise ValueError(f"Invalid fps {v!r}. Must be one of {list(FPS_OPTIONS)}")
        return v

    def to_overrides(self) -> ItemOverrides:
        return ItemOverrides(
            target_size_mb=self.target_size_mb,
            resolution=self.resolution,
            fps=self.fps,
            start_time=self.start,
            end_time=self.end,
        )


class UiConfig(BaseModel):
    """UI display configuration."""
    activity_feed_max_items: int = Field(default=5, ge=1, le=20)
    refresh_per_second: int = Field(default=4, ge=1, le=30)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    items: Dict[str, ItemOverridesConfig] = Field(default_factory=dict)
    ui: UiConfig = Field(default_factory=UiConfig)


class BatchRequest(BaseModel):
    """Settings snapshot taken when a batch starts; never changes mid-run."""

    model_config = ConfigDict(frozen=True)

    crf: int = Field(default=28, ge=0, le=51)
    encoder: str = "libx265"
    resolution: str = "Original"
    fps: str = "Original"
    strip_metadata: bool = False
    delete_original: bool = False
    output_format: str = ".mp4"
    mode: ProcessingMode = ProcessingMode.CRF
    target_size_mb: int = Field(default=25, gt=0)
    split_size_mb: int = Field(default=25, gt=0)
    low_disk_buffer_bytes: int = Field(default=5 * GIB, ge=0)
    reprocess_optimized: bool = False
    prevent_upsampling: bool = False

    @classmethod
    def from_config(cls, general: GeneralConfig) -> "BatchRequest":
        return cls(
            crf=general.crf,
            encoder=general.encoder,
            resolution=general.resolution,
            fps=general.fps,
            strip_metadata=general.strip_metadata,
            delete_original=general.delete_original,
            output_format=general.output_format,
            mode=general.mode,
            target_size_mb=general.target_size_mb,
            split_size_mb=general.split_size_mb,
            low_disk_buffer_bytes=int(general.low_disk_buffer_gb * GIB),
            reprocess_optimized=general.reprocess_optimized,
            prevent_upsampling=general.prevent_upsampling,
        )
