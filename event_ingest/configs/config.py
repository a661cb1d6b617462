"""Site registry loader for the venue event ingestion service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from event_ingest.configs.settings import Settings, get_settings

logger = logging.getLogger(__name__)

STRATEGIES = ("direct", "llm")
ID_STAGES = ("raw", "extracted")


@dataclass(frozen=True)
class SiteConfig:
    """
    Per-site configuration data.

    Everything that differs between venue sites lives here so the
    transformers and the upsert engine stay shared.
    """

    key: str
    strategy: str = "llm"
    enabled: bool = True
    organization: Optional[str] = None

    # External id derivation
    id_fields: Tuple[str, ...] = ("title", "date_start", "venue")
    id_required_fields: Tuple[str, ...] = ("title", "date_start")
    id_stage: str = "extracted"

    # Normalization defaults
    free_default: bool = False
    placeholder_image_url: Optional[str] = None
    default_venue_to_organization: bool = False
    link_type: str = "primary"
    fixed_event_link: Optional[str] = None
    image_base_url: Optional[str] = None
    defaults: Dict[str, Any] = field(default_factory=dict)

    # Extraction
    carry_fields: Tuple[str, ...] = ()
    prompt_exclude_fields: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    max_tokens: Optional[int] = None

    @classmethod
    def from_dict(cls, key: str, raw: Dict[str, Any]) -> "SiteConfig":
        """Build a SiteConfig from a YAML mapping, validating enum-like fields."""
        raw = dict(raw or {})
        strategy = raw.get("strategy", "llm")
        if strategy not in STRATEGIES:
            raise ValueError(f"Site '{key}': unknown strategy '{strategy}'")

        id_stage = raw.get("id_stage", "extracted")
        if id_stage not in ID_STAGES:
            raise ValueError(f"Site '{key}': unknown id_stage '{id_stage}'")

        id_fields = tuple(raw.get("id_fields") or cls.id_fields)
        if not id_fields:
            raise ValueError(f"Site '{key}': id_fields cannot be empty")

        max_tokens = raw.get("max_tokens")
        if max_tokens is not None and int(max_tokens) <= 0:
            raise ValueError(f"Site '{key}': max_tokens must be positive")

        return cls(
            key=key,
            strategy=strategy,
            enabled=bool(raw.get("enabled", True)),
            organization=raw.get("organization"),
            id_fields=id_fields,
            id_required_fields=tuple(
                raw.get("id_required_fields") or cls.id_required_fields
            ),
            id_stage=id_stage,
            free_default=bool(raw.get("free_default", False)),
            placeholder_image_url=raw.get("placeholder_image_url"),
            default_venue_to_organization=bool(
                raw.get("default_venue_to_organization", False)
            ),
            link_type=raw.get("link_type", "primary"),
            fixed_event_link=raw.get("fixed_event_link"),
            image_base_url=raw.get("image_base_url"),
            defaults=dict(raw.get("defaults") or {}),
            carry_fields=tuple(raw.get("carry_fields") or ()),
            prompt_exclude_fields=tuple(raw.get("prompt_exclude_fields") or ()),
            categories=tuple(raw.get("categories") or ()),
            tags=tuple(raw.get("tags") or ()),
            max_tokens=int(max_tokens) if max_tokens is not None else None,
        )


def _substitute_settings(content: str, settings: Settings) -> str:
    """Replace ${SETTING} placeholders with values from settings."""
    for key, value in settings.model_dump().items():
        placeholder = f"${{{key}}}"
        if placeholder in content:
            # Handle SecretStr
            val_str = (
                value.get_secret_value()
                if hasattr(value, "get_secret_value")
                else str(value)
            )
            content = content.replace(placeholder, val_str)
    return content


def load_sites_config(
    path: Optional[Path] = None, settings: Optional[Settings] = None
) -> Dict[str, SiteConfig]:
    """
    Load the site registry from YAML.

    Args:
        path: Path to sites.yaml. Defaults to settings.SITES_CONFIG_PATH.
        settings: Settings used for placeholder substitution.

    Returns:
        Dict mapping site_key -> SiteConfig

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a site entry is invalid.
    """
    settings = settings or get_settings()
    path = Path(path) if path else settings.SITES_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Missing sites config at {path}")

    with open(path, encoding="utf-8") as f:
        content = _substitute_settings(f.read(), settings)

    data = yaml.safe_load(content) or {}
    sites = data.get("sites", {}) or {}

    configs: Dict[str, SiteConfig] = {}
    for key, raw in sites.items():
        configs[key] = SiteConfig.from_dict(key, raw)

    logger.debug(f"Loaded {len(configs)} site configs from {path}")
    return configs


def validate_sites_config(path: Optional[Path] = None) -> List[str]:
    """Return a list of problems found in the site registry (empty when valid)."""
    try:
        configs = load_sites_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        return [str(e)]

    problems: List[str] = []
    for key, cfg in configs.items():
        if cfg.strategy == "direct" and cfg.carry_fields:
            problems.append(f"Site '{key}': carry_fields only apply to llm sites")
        if cfg.default_venue_to_organization and not cfg.organization:
            problems.append(
                f"Site '{key}': default_venue_to_organization needs an organization"
            )
        for f in cfg.id_required_fields:
            if f not in cfg.id_fields:
                problems.append(f"Site '{key}': required id field '{f}' is not hashed")
    return problems
