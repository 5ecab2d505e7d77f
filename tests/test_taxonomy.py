"""Tests for subcategory classification."""

import json

import pytest

from catalog_crawler.classify.taxonomy import Taxonomy


@pytest.fixture(scope="module")
def taxonomy():
    return Taxonomy.default()


@pytest.mark.parametrize(
    "name,category,expected",
    [
        ("Poltrona Eames", "Móveis", "Poltronas"),
        ("Mesa Industrial", "Móveis", "Mesas"),
        ("Cadeira Tulipa Branca", "Móveis", "Cadeiras"),
        ("SOFÁ RETRÔ 3 LUGARES", "Móveis", "Sofás"),
        ("Guarda-Roupa Casal", "Móveis", "Armários"),
        ("Pendente Cobre Industrial", "Iluminação", "Pendentes"),
        ("Luminária de Mesa Articulada", "Iluminação", "Luminárias de Mesa"),
        ("Abajur Cerâmica", "Iluminação", "Luminárias de Mesa"),
        ("Arandela Externa", "Iluminação", "Arandelas"),
    ],
)
def test_known_names(taxonomy, name, category, expected):
    assert taxonomy.classify(name, category) == expected


def test_first_matching_rule_wins(taxonomy):
    # Matches both "poltrona" and "cadeira"; Poltronas is listed first
    assert taxonomy.classify("Poltrona Cadeira do Papai", "Móveis") == "Poltronas"


def test_no_match_falls_back(taxonomy):
    assert taxonomy.classify("Vaso Decorativo", "Móveis") == "Outros"


def test_unknown_category_falls_back(taxonomy):
    assert taxonomy.classify("Poltrona Eames", "Tapetes") == "Outros"


def test_category_lookup_is_case_insensitive(taxonomy):
    assert taxonomy.classify("Poltrona Eames", "móveis") == "Poltronas"


def test_classification_is_deterministic(taxonomy):
    results = {taxonomy.classify("Mesa Lateral Redonda", "Móveis") for _ in range(20)}
    assert results == {"Mesas"}


def test_load_from_file_keeps_rule_order(tmp_path):
    path = tmp_path / "taxonomy.json"
    path.write_text(
        json.dumps(
            {
                "version": "test",
                "fallback": "Diversos",
                "categories": {
                    "Tapetes": {
                        "Passadeiras": ["passadeira"],
                        "Tapetes Sala": ["sala", "tapete"],
                    }
                },
            }
        ),
        encoding="utf-8",
    )

    taxonomy = Taxonomy.from_file(path)

    assert taxonomy.version == "test"
    assert [r.label for r in taxonomy.rules["Tapetes"]] == ["Passadeiras", "Tapetes Sala"]
    assert taxonomy.classify("Tapete Passadeira Sala", "Tapetes") == "Passadeiras"
    assert taxonomy.classify("Capacho", "Tapetes") == "Diversos"
