"""Recipe extraction from fetched HTML.

Three tiers, each tried only when the previous one found nothing:

1. schema.org ``Recipe`` nodes in JSON-LD script blocks;
2. ``itemscope``/``itemprop`` microdata (known recipe hosts only);
3. class/id heuristics plus meta tags (known recipe hosts only).

A record is produced by exactly one tier.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag  # type: ignore

from .html_meta import HTMLInput, extract_html_meta, extract_json_ld_scripts, node_text, parse_html
from .linkmeta_config import (
    KNOWN_RECIPE_HOSTS,
    RECIPE_INGREDIENT_NEEDLES,
    RECIPE_INSTRUCTION_NEEDLES,
    SCHEMA_ORG_PREFIXES,
)
from .linkmeta_utils import first_non_empty, host_matches, resolve_url, split_lines, unique_strings

logger = logging.getLogger(__name__)

DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")
_DURATION_UNITS = ("d", "h", "m", "s")


@dataclass
class NutritionInfo:
    calories: str = ""
    servings: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {key: value for key, value in (("calories", self.calories), ("servings", self.servings)) if value}


@dataclass
class RecipeRecord:
    name: str = ""
    description: str = ""
    image: str = ""
    ingredients: List[str] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)
    prep_time: str = ""
    cook_time: str = ""
    total_time: str = ""
    recipe_yield: str = ""
    author: str = ""
    date_published: str = ""
    cuisine: str = ""
    category: str = ""
    nutrition: Optional[NutritionInfo] = None

    def is_empty(self) -> bool:
        return not self.name and not self.ingredients and not self.instructions

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        optional = {
            "description": self.description,
            "image": self.image,
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "prep_time": self.prep_time,
            "cook_time": self.cook_time,
            "total_time": self.total_time,
            "yield": self.recipe_yield,
            "author": self.author,
            "date_published": self.date_published,
            "cuisine": self.cuisine,
            "category": self.category,
        }
        payload.update({key: value for key, value in optional.items() if value})
        if self.nutrition is not None:
            nutrition = self.nutrition.to_dict()
            if nutrition:
                payload["nutrition"] = nutrition
        return payload


def format_duration(iso_duration: str) -> str:
    """``PT1H30M`` -> ``1h 30m``; anything unparseable is returned trimmed."""

    trimmed = (iso_duration or "").strip()
    if not trimmed:
        return ""
    upper = trimmed.upper()
    if not upper.startswith("P"):
        return trimmed
    match = DURATION_RE.match(upper)
    if match is None:
        return trimmed
    parts = []
    for raw, unit in zip(match.groups(), _DURATION_UNITS):
        value = (raw or "").lstrip("0")
        if value:
            parts.append(f"{value}{unit}")
    return " ".join(parts) if parts else trimmed


def is_known_recipe_host(host: str) -> bool:
    return host_matches(host, *KNOWN_RECIPE_HOSTS)


def is_recipe_type(value: Any) -> bool:
    if isinstance(value, list):
        return any(is_recipe_type(item) for item in value)
    if not isinstance(value, str):
        return False
    normalized = value.strip().lower()
    for prefix in SCHEMA_ORG_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
            break
    return normalized == "recipe"


# JSON-LD value coercion


def parse_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        return first_non_empty(parse_string(value.get("name")), parse_string(value.get("text")), parse_string(value.get("url")))
    if isinstance(value, list):
        for item in value:
            parsed = parse_string(item)
            if parsed:
                return parsed
    return ""


def parse_image(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return first_non_empty(
            parse_string(value.get("url")),
            parse_string(value.get("contentUrl")),
            parse_string(value.get("@id")),
        )
    if isinstance(value, list):
        for item in value:
            url = parse_image(item)
            if url:
                return url
    return ""


def parse_string_list(*values: Any) -> List[str]:
    """First candidate that yields items: a list of strings/objects, or a newline-delimited string."""

    for value in values:
        if isinstance(value, list):
            items = unique_strings(parse_string(item) for item in value)
        elif isinstance(value, str):
            items = unique_strings(split_lines(value))
        else:
            continue
        if items:
            return items
    return []


def parse_instructions(value: Any) -> List[str]:
    if isinstance(value, str):
        return split_lines(value)
    if isinstance(value, list):
        steps: List[str] = []
        for item in value:
            steps.extend(parse_instructions(item))
        return unique_strings(steps)
    if isinstance(value, dict):
        text = parse_string(value.get("text"))
        if text:
            return split_lines(text)
        name = parse_string(value.get("name"))
        if name:
            return split_lines(name)
        if "itemListElement" in value:
            return parse_instructions(value["itemListElement"])
    return []


def parse_author(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return first_non_empty(parse_string(value.get("name")), parse_string(value.get("author")))
    if isinstance(value, list):
        for item in value:
            author = parse_author(item)
            if author:
                return author
    return ""


def parse_nutrition(value: Any) -> Optional[NutritionInfo]:
    nutrition = NutritionInfo()
    if isinstance(value, dict):
        nutrition.calories = parse_string(value.get("calories"))
        nutrition.servings = first_non_empty(
            parse_string(value.get("servingSize")),
            parse_string(value.get("servings")),
            parse_string(value.get("serving")),
        )
    elif isinstance(value, str):
        nutrition.calories = value.strip()
    if not nutrition.calories and not nutrition.servings:
        return None
    return nutrition


def recipe_from_node(payload: Dict[str, Any]) -> Optional[RecipeRecord]:
    for key in ("@graph", "mainEntity", "mainEntityOfPage", "item"):
        if key in payload:
            nested = find_recipe_in_json_ld(payload[key])
            if nested is not None:
                return nested
    if not is_recipe_type(payload.get("@type")):
        return None
    recipe = RecipeRecord(
        name=parse_string(payload.get("name")),
        description=parse_string(payload.get("description")),
        image=parse_image(payload.get("image")),
        ingredients=parse_string_list(payload.get("recipeIngredient"), payload.get("ingredients")),
        instructions=parse_instructions(payload.get("recipeInstructions")),
        prep_time=format_duration(parse_string(payload.get("prepTime"))),
        cook_time=format_duration(parse_string(payload.get("cookTime"))),
        total_time=format_duration(parse_string(payload.get("totalTime"))),
        recipe_yield=parse_string(payload.get("recipeYield")),
        author=parse_author(payload.get("author")),
        date_published=parse_string(payload.get("datePublished")),
        cuisine=parse_string(payload.get("recipeCuisine")),
        category=parse_string(payload.get("recipeCategory")),
        nutrition=parse_nutrition(payload.get("nutrition")),
    )
    return None if recipe.is_empty() else recipe


def find_recipe_in_json_ld(payload: Any) -> Optional[RecipeRecord]:
    if isinstance(payload, dict):
        return recipe_from_node(payload)
    if isinstance(payload, list):
        for item in payload:
            recipe = find_recipe_in_json_ld(item)
            if recipe is not None:
                return recipe
    return None


def parse_recipe_schema(body: HTMLInput) -> Optional[RecipeRecord]:
    """JSON-LD tier. Scripts that fail to decode are skipped."""

    for script in extract_json_ld_scripts(body):
        if not script.strip():
            continue
        try:
            payload = json.loads(script)
        except ValueError as exc:
            logger.debug("Skipping undecodable JSON-LD block: %s", exc)
            continue
        recipe = find_recipe_in_json_ld(payload)
        if recipe is not None:
            return recipe
    return None


# Microdata tier

_MICRODATA_NUTRITION = {"calories": "calories", "servings": "servings", "servingsize": "servings"}
_MICRODATA_FIRST_WINS = {"name": "name", "description": "description", "image": "image", "author": "author"}
_MICRODATA_DURATIONS = {"preptime": "prep_time", "cooktime": "cook_time", "totaltime": "total_time"}
_MICRODATA_PLAIN = {
    "recipeyield": "recipe_yield",
    "recipecuisine": "cuisine",
    "recipecategory": "category",
    "datepublished": "date_published",
}


def _find_recipe_scope(soup: BeautifulSoup) -> Optional[Tag]:
    for node in soup.find_all(attrs={"itemscope": True}):
        if "recipe" in str(node.get("itemtype") or "").lower():
            return node
    return None


def extract_recipe_from_microdata(soup: BeautifulSoup) -> Optional[RecipeRecord]:
    scope = _find_recipe_scope(soup)
    if scope is None:
        return None
    recipe = RecipeRecord()
    for node in [scope, *scope.find_all(attrs={"itemprop": True})]:
        prop = str(node.get("itemprop") or "").strip().lower()
        if not prop:
            continue
        value = str(node.get("content") or "").strip() or node_text(node)
        if prop in _MICRODATA_FIRST_WINS:
            attr = _MICRODATA_FIRST_WINS[prop]
            if not getattr(recipe, attr):
                setattr(recipe, attr, value)
        elif prop in ("recipeingredient", "ingredients"):
            recipe.ingredients = unique_strings(recipe.ingredients + split_lines(value))
        elif prop == "recipeinstructions":
            recipe.instructions = unique_strings(recipe.instructions + split_lines(value))
        elif prop in _MICRODATA_DURATIONS:
            setattr(recipe, _MICRODATA_DURATIONS[prop], format_duration(value))
        elif prop in _MICRODATA_PLAIN:
            setattr(recipe, _MICRODATA_PLAIN[prop], value)
        elif prop in _MICRODATA_NUTRITION:
            if recipe.nutrition is None:
                recipe.nutrition = NutritionInfo()
            setattr(recipe.nutrition, _MICRODATA_NUTRITION[prop], value)
    return None if recipe.is_empty() else recipe


# Heuristic tier


def _matches_needle(node: Tag, needle: str) -> bool:
    for attr in ("class", "id"):
        raw = node.get(attr)
        if isinstance(raw, list):
            raw = " ".join(raw)
        if raw and needle in str(raw).lower():
            return True
    return False


def extract_list_by_class_or_id(soup: BeautifulSoup, needle: str) -> List[str]:
    needle = (needle or "").lower()
    if not needle:
        return []
    values: List[str] = []
    for node in soup.find_all(True):
        if not _matches_needle(node, needle):
            continue
        items = [text for text in (node_text(li) for li in node.find_all("li")) if text]
        if items:
            values.extend(items)
        else:
            values.extend(split_lines(node_text(node)))
    return unique_strings(values)


def extract_recipe_from_heuristics(soup: BeautifulSoup) -> Optional[RecipeRecord]:
    meta_tags, title = extract_html_meta(soup)
    recipe = RecipeRecord(
        name=first_non_empty(title, meta_tags.get("og:title")),
        description=first_non_empty(meta_tags.get("og:description"), meta_tags.get("description")),
        image=first_non_empty(
            meta_tags.get("og:image"),
            meta_tags.get("twitter:image"),
            meta_tags.get("twitter:image:src"),
        ),
        author=first_non_empty(meta_tags.get("author"), meta_tags.get("twitter:creator")),
    )
    for needle in RECIPE_INGREDIENT_NEEDLES:
        recipe.ingredients = unique_strings(recipe.ingredients + extract_list_by_class_or_id(soup, needle))
    for needle in RECIPE_INSTRUCTION_NEEDLES:
        recipe.instructions = unique_strings(recipe.instructions + extract_list_by_class_or_id(soup, needle))
    return None if recipe.is_empty() else recipe


def extract_recipe_from_html(body: HTMLInput) -> Optional[RecipeRecord]:
    """Microdata tier, then heuristics."""

    if not body:
        return None
    soup = parse_html(body)
    return extract_recipe_from_microdata(soup) or extract_recipe_from_heuristics(soup)


def parse_recipe_if_present(body: HTMLInput, host: str, base_url: str = "") -> Optional[RecipeRecord]:
    """Run the tiers for a fetched page; relative images resolve against ``base_url``."""

    if not body:
        return None
    soup = parse_html(body)
    recipe = parse_recipe_schema(soup)
    if recipe is None and is_known_recipe_host(host):
        recipe = extract_recipe_from_html(soup)
    if recipe is not None and recipe.image and base_url:
        recipe.image = resolve_url(base_url, recipe.image)
    return recipe


__all__ = [
    "RecipeRecord",
    "NutritionInfo",
    "format_duration",
    "is_known_recipe_host",
    "is_recipe_type",
    "parse_recipe_schema",
    "find_recipe_in_json_ld",
    "extract_recipe_from_microdata",
    "extract_recipe_from_heuristics",
    "extract_recipe_from_html",
    "parse_recipe_if_present",
]
