"""Global config loading from ~/.anchorline/."""

from pathlib import Path

from pydantic import BaseModel, Field

ANCHORLINE_DIR = Path.home() / ".anchorline"
KEYS_DIR = ANCHORLINE_DIR / "keys"
STATE_DIR = ANCHORLINE_DIR / "state"
AUDIT_DIR = ANCHORLINE_DIR / "audit"


class BatchSettings(BaseModel):
    max_batch_size: int = Field(default=100, ge=1)
    max_batch_age_seconds: float = Field(default=60.0, gt=0)
    overflow_cap: int = Field(default=10_000, ge=1)
    submit_timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)


class CostSettings(BaseModel):
    per_event_gas: int = 50_000
    batch_gas: int = 70_000
    blob_gas: int = 131_072
    blob_fee_divisor: int = Field(default=16, ge=1)
    blob_size_bytes: int = 128 * 1024
    avg_event_bytes: int = 200


class CommitmentSettings(BaseModel):
    enabled: bool = False
    max_payload_bytes: int = Field(default=128 * 1024, ge=1)
    compression_enabled: bool = True
    submit_timeout_seconds: float = Field(default=10.0, gt=0)


class AnchorlineConfig(BaseModel):
    operator_id: str = "operator"
    admin_identities: list[str] = Field(default_factory=list)
    log_level: str = "INFO"
    log_json: bool = False
    fee_rate: int = 1
    audit_log: Path | None = None
    state_file: Path | None = None
    batch: BatchSettings = Field(default_factory=BatchSettings)
    commitment: CommitmentSettings = Field(default_factory=CommitmentSettings)
    cost: CostSettings = Field(default_factory=CostSettings)


def ensure_dirs() -> None:
    """Create the ~/.anchorline/ directory structure if it doesn't exist."""
    for d in [ANCHORLINE_DIR, KEYS_DIR, STATE_DIR, AUDIT_DIR]:
        d.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> AnchorlineConfig:
    """Load config from ~/.anchorline/config.yaml, or return defaults."""
    if path is None:
        ensure_dirs()
        path = ANCHORLINE_DIR / "config.yaml"
    if path.exists():
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return AnchorlineConfig(**data)
    return AnchorlineConfig()
