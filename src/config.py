"""
School Directory Contacts - Configuration

YAML configuration validated with Pydantic. Every section is optional; a
missing file yields the defaults.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.pipeline.batch import BatchConfig
from src.pipeline.discovery import BASE_URL, LOCALITY_CATALOG, SECTOR_CATALOG, STRATEGY_ORDER, DiscoveryConfig
from src.pipeline.fetchers.playwright import DEFAULT_USER_AGENT, BrowserSettings
from src.pipeline.listing import DETAIL_PATH_PATTERN


class ConfigError(Exception):
    """Configuration file unreadable or invalid."""


class DiscoveryMode(str, Enum):
    """Preset discovery targets."""
    SAMPLE = "sample"
    STANDARD = "standard"
    EXHAUSTIVE = "exhaustive"


MODE_TARGETS: Dict[DiscoveryMode, int] = {
    DiscoveryMode.SAMPLE: 150,
    DiscoveryMode.STANDARD: 1700,
    DiscoveryMode.EXHAUSTIVE: 10000,
}


class SiteSection(BaseModel):
    results_url: str = Field(default=BASE_URL, description="Directory results page")
    detail_path_pattern: str = Field(default=DETAIL_PATH_PATTERN, min_length=1, description="Substring identifying school detail URLs")

    @field_validator('results_url')
    @classmethod
    def validate_results_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('results_url must be a valid HTTP/HTTPS URL')
        return v


class BrowserSection(BaseModel):
    headless: bool = True
    slow_mo_ms: int = Field(default=0, ge=0)
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = Field(default=1280, gt=0)
    viewport_height: int = Field(default=800, gt=0)
    navigation_timeout_ms: int = Field(default=60000, gt=0)


class DiscoverySection(BaseModel):
    mode: DiscoveryMode = DiscoveryMode.STANDARD
    target_count: Optional[int] = Field(default=None, gt=0, description="Overrides the mode preset")
    max_pages: int = Field(default=300, ge=0)
    max_scroll_iterations: int = Field(default=300, ge=0)
    no_growth_threshold: int = Field(default=3, ge=1)
    facet_scroll_rounds: int = Field(default=5, ge=0)
    page_delay_s: float = Field(default=2.0, ge=0)
    strategies: List[str] = Field(default_factory=lambda: list(STRATEGY_ORDER))
    sectors: List[str] = Field(default_factory=lambda: list(SECTOR_CATALOG))
    localities: List[str] = Field(default_factory=lambda: list(LOCALITY_CATALOG))

    @field_validator('strategies')
    @classmethod
    def validate_strategies(cls, v):
        unknown = [s for s in v if s not in STRATEGY_ORDER]
        if unknown:
            raise ValueError(f'unknown discovery strategies: {unknown}')
        return v

    @property
    def effective_target(self) -> int:
        return self.target_count or MODE_TARGETS[self.mode]


class BatchSection(BaseModel):
    batch_size: int = Field(default=50, gt=0)
    item_delay_s: float = Field(default=1.5, ge=0)
    item_jitter_s: float = Field(default=1.0, ge=0)
    batch_pause_s: float = Field(default=5.0, ge=0)
    error_delay_s: float = Field(default=3.0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    retry_backoff_s: float = Field(default=2.0, ge=0)
    consent_probability: float = Field(default=0.1, ge=0, le=1)


class OutputSection(BaseModel):
    data_dir: str = "data"
    links_file: str = "schools_data_links.json"
    screenshots_dir: Optional[str] = None
    ops_log: Optional[str] = Field(default=None, description="Defaults to <data_dir>/ops.log")


class Settings(BaseModel):
    site: SiteSection = Field(default_factory=SiteSection)
    browser: BrowserSection = Field(default_factory=BrowserSection)
    discovery: DiscoverySection = Field(default_factory=DiscoverySection)
    batch: BatchSection = Field(default_factory=BatchSection)
    output: OutputSection = Field(default_factory=OutputSection)

    @property
    def data_dir(self) -> Path:
        return Path(self.output.data_dir)

    def browser_settings(self) -> BrowserSettings:
        b = self.browser
        return BrowserSettings(
            headless=b.headless,
            slow_mo_ms=b.slow_mo_ms,
            user_agent=b.user_agent,
            viewport_width=b.viewport_width,
            viewport_height=b.viewport_height,
            navigation_timeout_ms=b.navigation_timeout_ms,
        )

    def discovery_config(self) -> DiscoveryConfig:
        d = self.discovery
        return DiscoveryConfig(
            base_url=self.site.results_url,
            detail_pattern=self.site.detail_path_pattern,
            target_count=d.effective_target,
            max_scroll_iterations=d.max_scroll_iterations,
            no_growth_threshold=d.no_growth_threshold,
            max_pages=d.max_pages,
            facet_scroll_rounds=d.facet_scroll_rounds,
            sectors=tuple(d.sectors),
            localities=tuple(d.localities),
            strategies=tuple(d.strategies),
            navigation_timeout_ms=self.browser.navigation_timeout_ms,
            page_delay_s=d.page_delay_s,
        )

    def batch_config(self, *, resume_from_batch: int = 1, batch_limit: Optional[int] = None) -> BatchConfig:
        b = self.batch
        return BatchConfig(
            batch_size=b.batch_size,
            item_delay_s=b.item_delay_s,
            item_jitter_s=b.item_jitter_s,
            batch_pause_s=b.batch_pause_s,
            error_delay_s=b.error_delay_s,
            resume_from_batch=resume_from_batch,
            batch_limit=batch_limit,
        )


def load_settings(path: Optional[Path] = None, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Settings:
    """Load YAML settings, then apply per-section ``overrides`` (None values ignored)."""
    raw: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists() or not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config root must be a mapping: {path}")
    for section, values in (overrides or {}).items():
        clean = {k: v for k, v in (values or {}).items() if v is not None}
        existing = raw.get(section) or {}
        # Non-mapping sections are left for validation to reject
        if clean and isinstance(existing, dict):
            raw[section] = {**existing, **clean}
    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
