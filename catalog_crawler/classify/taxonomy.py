"""Keyword taxonomy for assigning subcategories from product names."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from catalog_crawler.ingest.base import OTHER_SUBCATEGORY

logger = logging.getLogger(__name__)

DEFAULT_TAXONOMY_PATH = Path(__file__).resolve().parent.parent / "data" / "taxonomy.json"


@dataclass
class SubcategoryRule:
    """A subcategory label and the keywords that select it."""

    label: str
    keywords: list[str]

    def matches(self, name_lower: str) -> bool:
        return any(kw in name_lower for kw in self.keywords)


@dataclass
class Taxonomy:
    """
    Ordered keyword rules per category.

    Rule order is significant: the first rule with a matching keyword wins,
    so "Poltrona" is listed before "Cadeira" to keep armchairs out of chairs.
    """

    rules: dict[str, list[SubcategoryRule]] = field(default_factory=dict)
    fallback: str = OTHER_SUBCATEGORY
    version: str = "unversioned"

    @classmethod
    def from_dict(cls, data: dict) -> "Taxonomy":
        rules: dict[str, list[SubcategoryRule]] = {}
        for category, labels in data.get("categories", {}).items():
            # JSON objects keep insertion order, which is the match order
            rules[category] = [
                SubcategoryRule(label=label, keywords=[kw.lower() for kw in keywords])
                for label, keywords in labels.items()
            ]
        return cls(
            rules=rules,
            fallback=data.get("fallback", OTHER_SUBCATEGORY),
            version=str(data.get("version", "unversioned")),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "Taxonomy":
        """Load a taxonomy from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            taxonomy = cls.from_dict(json.load(f))
        logger.debug(f"Loaded taxonomy {taxonomy.version} from {path}")
        return taxonomy

    @classmethod
    def default(cls) -> "Taxonomy":
        """The taxonomy shipped with the package."""
        return cls.from_file(DEFAULT_TAXONOMY_PATH)

    @classmethod
    def from_settings(cls, settings) -> "Taxonomy":
        if settings.taxonomy_file:
            return cls.from_file(settings.taxonomy_file)
        return cls.default()

    def rules_for(self, category: str) -> Optional[list[SubcategoryRule]]:
        """Rules for a category, matched exactly then case-insensitively."""
        if category in self.rules:
            return self.rules[category]
        folded = category.casefold()
        for name, rules in self.rules.items():
            if name.casefold() == folded:
                return rules
        return None

    def classify(self, name: str, category: str) -> str:
        """
        Subcategory label for a product name within a category.

        Returns the fallback label when the category is unknown or no
        keyword matches.
        """
        rules = self.rules_for(category)
        if not rules or not name:
            return self.fallback

        name_lower = name.lower()
        for rule in rules:
            if rule.matches(name_lower):
                return rule.label
        return self.fallback
