from pathlib import Path

import pytest

from src.config import ConfigError, DiscoveryMode, load_settings


def write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "config.yaml"
    p.write_text(text, encoding="utf-8")
    return p


def test_defaults_without_file():
    s = load_settings(None)
    assert s.discovery.mode is DiscoveryMode.STANDARD
    assert s.discovery.effective_target == 1700
    assert s.batch.batch_size == 50
    assert s.browser.headless is True
    assert s.data_dir == Path("data")


def test_mode_presets_and_explicit_target(tmp_path: Path):
    s = load_settings(write(tmp_path, "discovery:\n  mode: sample\n"))
    assert s.discovery.effective_target == 150
    s = load_settings(write(tmp_path, "discovery:\n  mode: exhaustive\n  target_count: 42\n"))
    assert s.discovery.effective_target == 42
    assert s.discovery_config().target_count == 42


def test_overrides_ignore_none(tmp_path: Path):
    path = write(tmp_path, "batch:\n  batch_size: 20\n")
    s = load_settings(path, {"batch": {"batch_size": None}, "browser": {"headless": False}})
    assert s.batch.batch_size == 20
    assert s.browser.headless is False
    assert s.browser_settings().headless is False


def test_batch_config_carries_resume_options(tmp_path: Path):
    s = load_settings(write(tmp_path, "batch:\n  batch_size: 10\n  batch_pause_s: 0\n"))
    cfg = s.batch_config(resume_from_batch=3, batch_limit=2)
    assert (cfg.batch_size, cfg.batch_pause_s, cfg.resume_from_batch, cfg.batch_limit) == (10, 0, 3, 2)


def test_example_config_is_valid():
    example = Path(__file__).resolve().parents[2] / "config" / "example.yaml"
    s = load_settings(example)
    assert s.discovery.strategies == ["incremental_reveal", "paginate", "faceted"]
    assert "Paris" in s.discovery.localities


@pytest.mark.parametrize("text", [
    "discovery: [unclosed",
    "- just\n- a list\n",
    "batch:\n  batch_size: 0\n",
    "discovery:\n  strategies: [teleport]\n",
    "site:\n  results_url: ftp://example.com\n",
])
def test_invalid_configs_raise_config_error(tmp_path: Path, text):
    with pytest.raises(ConfigError):
        load_settings(write(tmp_path, text))


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_settings(tmp_path / "nope.yaml")


def test_detail_path_pattern_reaches_discovery_config(tmp_path: Path):
    s = load_settings(write(tmp_path, "site:\n  detail_path_pattern: /ecole/\n"))
    assert s.discovery_config().detail_pattern == "/ecole/"
    assert load_settings(None).discovery_config().detail_pattern == "/etablissement-"
    with pytest.raises(ConfigError):
        load_settings(write(tmp_path, "site:\n  detail_path_pattern: ''\n"))
