"""Settings for tile synchronization operations."""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tilesync.components.mbtiles.layouts import MbtType
from tilesync.components.mbtiles.metadata import MergePolicy
from tilesync.components.mbtiles.validation import IntegrityCheck
from tilesync.components.sync.options import OnDuplicate
from tilesync.core.schemas import PatchType

# Default values
_DEFAULT_FETCH_BATCH_SIZE = 1000
_DEFAULT_LOG_LEVEL = "INFO"

# Configuration
_ENV_PREFIX = "TILESYNC_"
_ENV_FILE = ".env.tilesync"
_ENV_FILE_ENCODING = "utf-8"


class TileSyncSettings(BaseSettings):
    """Settings for copy / diff / apply-patch.

    All settings can be overridden via environment variables with the
    TILESYNC_ prefix, e.g. TILESYNC_PATCH_TYPE=whole.
    """

    patch_type: PatchType = Field(
        default=PatchType.BIN_DIFF_RAW,
        description="Encoding of changed tiles in new patches",
    )
    metadata_policy: MergePolicy = Field(
        default=MergePolicy.STRICT,
        description="Whether a metadata 'add' may overwrite a different existing value",
    )
    on_duplicate: OnDuplicate = Field(
        default=OnDuplicate.OVERRIDE,
        description="Copy behaviour when the destination already holds a tile",
    )
    dst_type: Optional[MbtType] = Field(
        default=None,
        description="Layout of newly created destinations (default: same as source)",
    )
    integrity_check: IntegrityCheck = Field(
        default=IntegrityCheck.QUICK,
        description="SQLite integrity check used by validate",
    )
    fetch_batch_size: int = Field(
        default=_DEFAULT_FETCH_BATCH_SIZE,
        description="Rows fetched per round trip while streaming tiles",
        gt=0,
    )
    progress: bool = Field(
        default=True,
        description="Show progress bars",
    )
    log_level: str = Field(
        default=_DEFAULT_LOG_LEVEL,
        description="Logging level for the CLI",
    )

    model_config = SettingsConfigDict(
        env_prefix=_ENV_PREFIX,
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        case_sensitive=False,
        extra="ignore",
    )
