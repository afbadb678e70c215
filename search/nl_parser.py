import json
import re
from typing import Optional

from groq import Groq
from pydantic import ValidationError

from exchange.config import get_settings
from exchange.logger import get_logger
from exchange.models import CatalogFilter, Category, Condition, ItemType, Size

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a search assistant for ReWear, a clothing exchange platform.
Convert the user's search query into structured filter parameters.

Available categories: "men", "women", "kids"
Available types: "shirt", "pants", "dress", "jacket", "shoes", "accessories"
Available sizes: "XS", "S", "M", "L", "XL", "XXL"
Available conditions: "new", "like-new", "excellent", "good", "fair"

Return JSON with only the relevant fields:
{
    "category": "...",
    "type": "...",
    "size": "...",
    "condition": "...",
    "search": "remaining free-text search terms"
}

Return ONLY valid JSON, no explanations."""

FILTER_FIELDS = ("category", "type", "size", "condition", "search")

CATEGORY_WORDS = {
    "men": Category.MEN, "mens": Category.MEN, "men's": Category.MEN, "male": Category.MEN,
    "women": Category.WOMEN, "womens": Category.WOMEN, "women's": Category.WOMEN, "female": Category.WOMEN,
    "kids": Category.KIDS, "kid": Category.KIDS, "children": Category.KIDS, "child": Category.KIDS,
}
TYPE_WORDS = {
    "shirt": ItemType.SHIRT, "shirts": ItemType.SHIRT, "tee": ItemType.SHIRT, "t-shirt": ItemType.SHIRT,
    "pants": ItemType.PANTS, "jeans": ItemType.PANTS, "trousers": ItemType.PANTS,
    "dress": ItemType.DRESS, "dresses": ItemType.DRESS,
    "jacket": ItemType.JACKET, "jackets": ItemType.JACKET, "coat": ItemType.JACKET,
    "shoes": ItemType.SHOES, "sneakers": ItemType.SHOES, "boots": ItemType.SHOES,
    "accessories": ItemType.ACCESSORIES, "bag": ItemType.ACCESSORIES, "hat": ItemType.ACCESSORIES,
}
CONDITION_PHRASES = (
    ("like new", Condition.LIKE_NEW),
    ("like-new", Condition.LIKE_NEW),
    ("brand new", Condition.NEW),
    ("excellent", Condition.EXCELLENT),
    ("good", Condition.GOOD),
    ("fair", Condition.FAIR),
    ("new", Condition.NEW),
)
SIZE_PATTERN = re.compile(r"\bsize\s+(xxl|xl|xs|s|m|l)\b|\b(xxl|xl|xs)\b", re.IGNORECASE)
STOP_WORDS = {"a", "an", "the", "in", "for", "size", "condition", "with", "and", "i", "want", "looking", "show", "me", "some"}


class SearchQueryParser:
    """Turns a free-text search into a CatalogFilter.

    The LLM output is untrusted: each field is validated on its own and values
    outside the enumerations are dropped rather than failing the search.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key or settings.GROQ_API_KEY
        self.model = model or settings.GROQ_MODEL
        self.client = Groq(api_key=self.api_key) if self.api_key else None

    def parse(self, query: str) -> CatalogFilter:
        raw = self._parse_with_groq(query) if self.client else self._parse_locally(query)
        return self.to_filter(raw, query)

    def to_filter(self, raw: dict, query: str) -> CatalogFilter:
        accepted = {}
        for name in FILTER_FIELDS:
            value = raw.get(name)
            if value in (None, ""):
                continue
            try:
                CatalogFilter(**{name: value})
            except ValidationError:
                logger.warning("Dropping invalid %s=%r from parsed search", name, value)
                continue
            accepted[name] = value

        if not accepted:
            accepted["search"] = query
        return CatalogFilter(**accepted)

    def _parse_with_groq(self, text: str) -> dict:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": text}
                ],
                temperature=0.1,
                max_tokens=256
            )
            return self._extract_json(response.choices[0].message.content)
        except Exception:
            logger.warning("Groq search parsing failed, using keyword parser", exc_info=True)
            return self._parse_locally(text)

    def _extract_json(self, text: str) -> dict:
        json_match = re.search(r'\{[\s\S]*\}', text or "")
        if json_match:
            try:
                parsed = json.loads(json_match.group())
                return parsed if isinstance(parsed, dict) else {}
            except json.JSONDecodeError:
                pass
        return {}

    def _parse_locally(self, text: str) -> dict:
        result: dict = {}
        remaining = text.lower()

        for phrase, condition in CONDITION_PHRASES:
            if re.search(rf"\b{re.escape(phrase)}\b", remaining):
                result["condition"] = condition.value
                remaining = re.sub(rf"\b{re.escape(phrase)}\b", " ", remaining)
                break

        size_match = SIZE_PATTERN.search(remaining)
        if size_match:
            result["size"] = Size((size_match.group(1) or size_match.group(2)).upper()).value
            remaining = remaining[:size_match.start()] + " " + remaining[size_match.end():]

        leftover = []
        for word in remaining.split():
            if "category" not in result and word in CATEGORY_WORDS:
                result["category"] = CATEGORY_WORDS[word].value
            elif "type" not in result and word in TYPE_WORDS:
                result["type"] = TYPE_WORDS[word].value
            elif word not in STOP_WORDS:
                leftover.append(word)

        if leftover:
            result["search"] = " ".join(leftover)
        return result
