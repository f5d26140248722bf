"""
Extractor package: turns raw answers into competitor mentions.

Public API:
    - normalize: Canonical entity token used for every id comparison
    - same_entity: Compare two names by normalized form

The analysis service itself lives in extractor.competitor_extractor and is
imported from there directly (it depends on storage records, which depend on
normalize).
"""

from llm_visibility.extractor.normalize import normalize, same_entity

__all__ = [
    "normalize",
    "same_entity",
]
