"""
Transformer Dispatcher.

Maps a site key to the TransformerStrategy that handles it. The site list
comes from sites.yaml; each site names a strategy ("direct" or "llm") that
is looked up in STRATEGY_REGISTRY.

Usage:
    from event_ingest.ingestion.factory import TransformerDispatcher

    dispatcher = TransformerDispatcher(engine)
    transformer = dispatcher.resolve("fabcafe")
    if transformer is None:
        ...  # unsupported site
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from event_ingest.configs.config import SiteConfig, load_sites_config
from event_ingest.configs.settings import Settings, get_settings
from event_ingest.ingestion.extraction.llm_client import (
    OpenAIChatClient,
    TextExtractionClient,
)
from event_ingest.ingestion.persist import EventUpsertEngine
from event_ingest.ingestion.transformers.base_transformer import TransformerStrategy
from event_ingest.ingestion.transformers.direct import DirectTransformer
from event_ingest.ingestion.transformers.llm import LLMTransformer

logger = logging.getLogger(__name__)

# Strategy registry - maps strategy names to transformer builders
TransformerBuilder = Callable[
    [SiteConfig, EventUpsertEngine, Callable[[], TextExtractionClient]],
    TransformerStrategy,
]
STRATEGY_REGISTRY: Dict[str, TransformerBuilder] = {}


def register_strategy(name: str):
    """
    Decorate a function to register it as a transformer builder.

    Usage:
        @register_strategy("direct")
        def build_direct(site, engine, get_extraction_client):
            return DirectTransformer(site, engine)
    """

    def decorator(builder: TransformerBuilder) -> TransformerBuilder:
        STRATEGY_REGISTRY[name] = builder
        return builder

    return decorator


@register_strategy("direct")
def build_direct_transformer(site, engine, get_extraction_client):
    return DirectTransformer(site, engine)


@register_strategy("llm")
def build_llm_transformer(site, engine, get_extraction_client):
    return LLMTransformer(site, engine, get_extraction_client())


class TransformerDispatcher:
    """
    Resolves site keys to transformer instances.

    Unknown or disabled sites resolve to None ("unsupported site") instead
    of raising.
    """

    def __init__(
        self,
        engine: EventUpsertEngine,
        extraction_client: Optional[TextExtractionClient] = None,
        sites: Optional[Dict[str, SiteConfig]] = None,
        config_path: Optional[Path] = None,
        settings: Optional[Settings] = None,
    ):
        self.engine = engine
        self.settings = settings or get_settings()
        self.config_path = config_path
        self._extraction_client = extraction_client
        self._sites = sites
        self._transformers: Dict[str, TransformerStrategy] = {}

    @property
    def sites(self) -> Dict[str, SiteConfig]:
        """Load and cache the site registry."""
        if self._sites is None:
            self._sites = load_sites_config(self.config_path, self.settings)
        return self._sites

    def _get_extraction_client(self) -> TextExtractionClient:
        if self._extraction_client is None:
            self._extraction_client = TextExtractionClient(
                OpenAIChatClient.from_settings(self.settings)
            )
        return self._extraction_client

    async def aclose(self) -> None:
        """Close the extraction client if one was built."""
        if self._extraction_client is not None:
            await self._extraction_client.aclose()

    def supported_sites(self) -> List[str]:
        """Names of all enabled sites."""
        return [key for key, cfg in self.sites.items() if cfg.enabled]

    def list_sites(self) -> Dict[str, Dict]:
        """
        List all configured sites with their status.

        Returns:
            Dict mapping site_key -> {enabled: bool, strategy: str}
        """
        return {
            key: {"enabled": cfg.enabled, "strategy": cfg.strategy}
            for key, cfg in self.sites.items()
        }

    def resolve(self, site_key: str) -> Optional[TransformerStrategy]:
        """
        Return the transformer for site_key, or None if the site is unsupported.
        """
        if site_key in self._transformers:
            return self._transformers[site_key]

        site = self.sites.get(site_key)
        if site is None or not site.enabled:
            logger.warning(f"Unsupported site: {site_key}")
            return None

        builder = STRATEGY_REGISTRY.get(site.strategy)
        if builder is None:
            logger.error(f"Site '{site_key}' uses unknown strategy '{site.strategy}'")
            return None

        transformer = builder(site, self.engine, self._get_extraction_client)
        self._transformers[site_key] = transformer
        logger.debug(f"Created {site.strategy} transformer for {site_key}")
        return transformer
