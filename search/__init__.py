"""
Natural-language Search Package

Translates free-text catalog queries ("like new denim jacket size M") into the
validated CatalogFilter consumed by the catalog service, using Groq when an API
key is configured and a keyword parser otherwise.
"""

from .nl_parser import SearchQueryParser

__all__ = [
    "SearchQueryParser",
]
