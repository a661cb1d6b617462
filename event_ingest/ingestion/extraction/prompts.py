"""Prompt construction for LLM-backed site transformers."""

import json
from typing import Any, Dict, Iterable

from event_ingest.configs.config import SiteConfig

OUTPUT_SHAPE = {
    "events": [
        {
            "title": "Event title",
            "organization": "Organization name",
            "description": "Event description",
            "date_start": "YYYY-MM-DD",
            "date_end": "YYYY-MM-DD",
            "venue": "Venue name",
            "event_link": "Event URL",
            "image_url": "Image URL",
            "schedule": [
                {
                    "date": "YYYY-MM-DD",
                    "time_start": "HH:MM",
                    "time_end": "HH:MM",
                    "special_notes": "Special Notes",
                }
            ],
            "categories": ["Category"],
            "tags": ["Tag"],
            "prices": [
                {
                    "price_tier": "Tier",
                    "amount": "Amount",
                    "currency": "JPY",
                    "discount_info": "Discount Info",
                }
            ],
        }
    ]
}

PROMPT_TEMPLATE = """Extract the events described in the scraped data below.
{vocabulary}
Answer with a single JSON object of this shape and nothing else:
{shape}

Scraped data:
{data}
"""


def prompt_payload(raw_event: Dict[str, Any], exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """Return the raw event without the fields the site withholds from the prompt."""
    excluded = set(exclude)
    return {k: v for k, v in raw_event.items() if k not in excluded}


def build_extraction_prompt(raw_event: Dict[str, Any], site: SiteConfig) -> str:
    vocabulary = ""
    if site.categories:
        vocabulary += f"Choose categories from: {', '.join(site.categories)}.\n"
    if site.tags:
        vocabulary += f"Choose tags from: {', '.join(site.tags)}.\n"

    return PROMPT_TEMPLATE.format(
        vocabulary=vocabulary,
        shape=json.dumps(OUTPUT_SHAPE, indent=2),
        data=json.dumps(
            prompt_payload(raw_event, site.prompt_exclude_fields),
            ensure_ascii=False,
            indent=2,
            default=str,
        ),
    )
