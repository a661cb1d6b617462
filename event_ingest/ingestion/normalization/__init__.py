"""
Normalization module for scraped event data.

This package provides:
- ExternalIdStrategy: stable per-site event identifiers
- FieldNormalizer: raw fields to CanonicalEvent shape with site defaults
- CurrencyParser: price string parsing utilities
"""
