"""Tests for the auto-grader."""
from dataclasses import replace

import pytest

from homework_sync.answers import SelectionAnswer
from homework_sync.grader import INCORRECT, UNGRADED, GradeResult, grade, normalize_text


@pytest.fixture
def mc(assignment):
    return assignment.get_question("q1")


@pytest.fixture
def tick(assignment):
    return assignment.get_question("q3")


def test_normalize_text():
    assert normalize_text("  Water And Sunlight \n") == "water and sunlight"


def test_multiple_choice_ignores_case_and_whitespace(mc):
    assert grade(mc, "water and sunlight") == GradeResult(is_correct=True, points_earned=5)
    assert grade(mc, "  WATER AND SUNLIGHT  ").is_correct is True


def test_multiple_choice_wrong_answer(mc):
    assert grade(mc, "Only water") == GradeResult(is_correct=False, points_earned=0)


def test_tickbox_missing_item_is_incorrect(tick):
    assert grade(tick, ["Tree", "Flower"]) == INCORRECT


def test_tickbox_exact_set_is_correct(tick):
    assert grade(tick, ["Tree", "Dog", "Flower"]) == GradeResult(is_correct=True, points_earned=10)


def test_tickbox_order_does_not_matter(tick):
    assert grade(tick, ["Flower", "Tree", "Dog"]).is_correct is True
    assert grade(tick, SelectionAnswer(("Dog", "Flower", "Tree"))).is_correct is True


def test_tickbox_extra_item_is_incorrect(tick):
    assert grade(tick, ["Tree", "Dog", "Flower", "Rock"]) == INCORRECT


def test_tickbox_json_answer_and_key(tick):
    keyed_as_json = replace(tick, correct_answer='["Tree", "Dog", "Flower"]')
    assert grade(keyed_as_json, '["Dog", "Tree", "Flower"]').is_correct is True


def test_short_answer_is_ungraded(assignment):
    assert grade(assignment.get_question("q2"), "Fish") == UNGRADED


def test_question_without_key_is_ungraded(mc):
    assert grade(replace(mc, correct_answer=None), "Only water") == UNGRADED


def test_malformed_answer_grades_incorrect(mc, tick):
    assert grade(mc, ["Water and sunlight"]) == INCORRECT
    assert grade(tick, "Tree") == INCORRECT
    assert grade(tick, None) == INCORRECT


def test_unusable_key_grades_incorrect(tick):
    assert grade(replace(tick, correct_answer="not json"), ["Tree"]) == INCORRECT


def test_grid_all_rows_match(grid_question):
    assert grade(grid_question, {"0": 0, "1": 1}) == GradeResult(is_correct=True, points_earned=4)


def test_grid_wrong_or_partial(grid_question):
    assert grade(grid_question, {"0": 1, "1": 1}) == INCORRECT
    assert grade(grid_question, {"0": 0}) == INCORRECT


def test_tickbox_key_with_option_objects_grades_incorrect(tick):
    keyed_by_objects = replace(tick, correct_answer=[{"text": "Tree"}, {"text": "Dog"}])
    assert grade(keyed_by_objects, ["Tree", "Dog"]) == INCORRECT
