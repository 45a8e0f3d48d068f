import json

import pytest

from linkmeta.workflows.recipe_extractor import (
    format_duration,
    is_recipe_type,
    parse_recipe_if_present,
    parse_recipe_schema,
)


def _page(*json_ld_blocks, body=""):
    scripts = "".join(
        f'<script type="application/ld+json">{block if isinstance(block, str) else json.dumps(block)}</script>'
        for block in json_ld_blocks
    )
    return f"<html><head><title>Recipe page</title>{scripts}</head><body>{body}</body></html>".encode("utf-8")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PT1H30M", "1h 30m"),
        ("pt20m", "20m"),
        ("P1DT2H", "1d 2h"),
        ("PT45S", "45s"),
        ("15 mins", "15 mins"),
        ("PT0M", "PT0M"),
        ("", ""),
    ],
)
def test_format_duration(raw, expected):
    assert format_duration(raw) == expected


def test_is_recipe_type_accepts_schema_prefixes_and_lists():
    assert is_recipe_type("Recipe")
    assert is_recipe_type("https://schema.org/Recipe")
    assert is_recipe_type(["NewsArticle", "recipe"])
    assert not is_recipe_type("HowTo")


def test_newline_delimited_ingredients():
    page = _page(
        {
            "@context": "https://schema.org",
            "@type": "Recipe",
            "name": "Pancakes",
            "recipeIngredient": "1 cup flour\n2 eggs\n\n 1 cup milk \n2 eggs",
            "recipeInstructions": [
                {"@type": "HowToStep", "text": "Whisk everything."},
                {"@type": "HowToStep", "text": "Cook on a hot pan."},
            ],
            "prepTime": "PT10M",
            "cookTime": "PT1H30M",
            "recipeYield": ["4", "4 servings"],
            "author": [{"@type": "Person", "name": "Sam Cook"}],
            "nutrition": {"@type": "NutritionInformation", "calories": "250 kcal", "servingSize": "1 pancake"},
        }
    )
    recipe = parse_recipe_schema(page)
    assert recipe.name == "Pancakes"
    assert recipe.ingredients == ["1 cup flour", "2 eggs", "1 cup milk"]
    assert recipe.instructions == ["Whisk everything.", "Cook on a hot pan."]
    assert recipe.prep_time == "10m"
    assert recipe.cook_time == "1h 30m"
    assert recipe.recipe_yield == "4"
    assert recipe.author == "Sam Cook"

    payload = recipe.to_dict()
    assert payload["yield"] == "4"
    assert payload["nutrition"] == {"calories": "250 kcal", "servings": "1 pancake"}
    assert "cuisine" not in payload


def test_recipe_inside_graph_with_type_list():
    page = _page(
        {
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "WebPage", "name": "Soup page"},
                {"@type": ["Recipe", "NewsArticle"], "name": "Soup", "recipeIngredient": ["water", "salt", "water"]},
            ],
        }
    )
    recipe = parse_recipe_schema(page)
    assert recipe.name == "Soup"
    assert recipe.ingredients == ["water", "salt"]


def test_unnamed_howto_section_yields_its_steps():
    page = _page(
        {
            "@type": "Recipe",
            "name": "Stew",
            "recipeInstructions": [
                {
                    "@type": "HowToSection",
                    "itemListElement": [
                        {"@type": "HowToStep", "text": "Brown the meat."},
                        {"@type": "HowToStep", "text": "Simmer."},
                    ],
                },
                "Serve.\nEnjoy.",
            ],
        }
    )
    assert parse_recipe_schema(page).instructions == ["Brown the meat.", "Simmer.", "Serve.", "Enjoy."]


def test_undecodable_json_ld_block_is_skipped():
    page = _page("{not json", {"@type": "Recipe", "name": "Toast"})
    assert parse_recipe_schema(page).name == "Toast"


def test_non_recipe_json_ld_is_ignored():
    assert parse_recipe_schema(_page({"@type": "Article", "name": "News"})) is None


def test_relative_image_resolves_against_page_url():
    page = _page({"@type": "Recipe", "name": "Toast", "image": {"@type": "ImageObject", "url": "/img/toast.jpg"}})
    recipe = parse_recipe_if_present(page, "example.com", "https://example.com/recipes/toast")
    assert recipe.image == "https://example.com/img/toast.jpg"


MICRODATA_BODY = (
    '<div itemscope itemtype="https://schema.org/Recipe">'
    '<h1 itemprop="name">Salad</h1>'
    '<span itemprop="recipeIngredient">Lettuce</span>'
    '<span itemprop="recipeIngredient">Tomato</span>'
    '<div itemprop="recipeInstructions">Wash.\nChop.</div>'
    '<meta itemprop="totalTime" content="PT15M">'
    '<span itemprop="recipeYield">2 servings</span>'
    "</div>"
)

HEURISTIC_BODY = (
    '<ul class="ingredients-list"><li>Bread</li><li>Butter</li></ul>'
    '<ol id="recipe-directions"><li>Toast the bread.</li><li>Spread the butter.</li></ol>'
)


def test_microdata_on_known_host():
    recipe = parse_recipe_if_present(_page(body=MICRODATA_BODY), "www.allrecipes.com")
    assert recipe.name == "Salad"
    assert recipe.ingredients == ["Lettuce", "Tomato"]
    assert recipe.instructions == ["Wash.", "Chop."]
    assert recipe.total_time == "15m"
    assert recipe.recipe_yield == "2 servings"


def test_heuristics_on_known_host():
    recipe = parse_recipe_if_present(_page(body=HEURISTIC_BODY), "www.seriouseats.com")
    assert recipe.name == "Recipe page"
    assert recipe.ingredients == ["Bread", "Butter"]
    assert recipe.instructions == ["Toast the bread.", "Spread the butter."]


def test_html_tiers_skipped_on_unknown_hosts():
    assert parse_recipe_if_present(_page(body=MICRODATA_BODY), "example.com") is None
    assert parse_recipe_if_present(_page(body=HEURISTIC_BODY), "example.com") is None
    assert parse_recipe_if_present(b"", "www.allrecipes.com") is None
