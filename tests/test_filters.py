"""Tests for the category keyword policy."""

from dropwatch.ingest.filters import CategoryFilter, is_in_category


def test_plush_figure_is_rejected():
    assert is_in_category("Pokémon Plush Figure") is False


def test_booster_box_is_kept():
    assert is_in_category("Pokémon TCG Scarlet & Violet Booster Box") is True


def test_needs_an_inclusion_term():
    assert is_in_category("Stainless Steel Toaster") is False


def test_exclusion_wins_over_inclusion():
    assert is_in_category("Pokemon Scarlet Video Game") is False
    assert is_in_category("Pokemon Elite Trainer Box", "Backpack bundle") is False


def test_plural_and_word_boundaries():
    policy = CategoryFilter(include=["card"], exclude=["toy"])
    assert policy.matches("Trading Cards Bundle")
    assert not policy.matches("Cardboard Box")
    assert not policy.matches("Card Toys Set")
