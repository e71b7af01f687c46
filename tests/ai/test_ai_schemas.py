"""Tests for lenient validation of model output (ai/schemas.py)."""

from __future__ import annotations

import json

from review_insight.ai.schemas import AnalysisResult, ComparisonResult, CriticalIssue, Sentiment


def test_missing_sections_default_to_empty() -> None:
    result = AnalysisResult.model_validate({})
    assert result.critical_issues == []
    assert result.sentiment == Sentiment()
    assert result.insights == ""


def test_unknown_severity_becomes_medium() -> None:
    issue = CriticalIssue.model_validate({"title": "Crash", "severity": "Catastrophic"})
    assert issue.severity == "medium"
    assert CriticalIssue.model_validate({"severity": " HIGH "}).severity == "high"


def test_frequency_and_examples_are_coerced() -> None:
    issue = CriticalIssue.model_validate(
        {"frequency": "12.7", "examples": "single quote", "affectedVersion": 5}
    )
    assert issue.frequency == 12
    assert issue.examples == ["single quote"]
    assert issue.affected_version == "5"
    assert CriticalIssue.model_validate({"frequency": "many"}).frequency == 0
    assert CriticalIssue.model_validate({"frequency": -3}).frequency == 0


def test_sentiment_is_clamped() -> None:
    sentiment = Sentiment.model_validate({"positive": 140, "negative": -5, "neutral": "n/a"})
    assert (sentiment.positive, sentiment.negative, sentiment.neutral) == (100.0, 0.0, 0.0)


def test_non_object_list_items_are_dropped() -> None:
    result = AnalysisResult.model_validate(
        {
            "criticalIssues": ["just a string", {"title": "Login loop"}],
            "featureRequests": "not a list",
            "sentiment": "positive",
            "priorityActions": ["Ship fix", None],
        }
    )
    assert [i.title for i in result.critical_issues] == ["Login loop"]
    assert result.feature_requests == []
    assert result.sentiment.positive == 0.0
    assert result.priority_actions == ["Ship fix"]


def test_dump_uses_camel_case() -> None:
    dumped = AnalysisResult.model_validate(
        {"criticalIssues": [{"title": "Crash", "affectedVersion": "2.0"}]}
    ).model_dump(by_alias=True)
    assert "criticalIssues" in dumped
    assert dumped["criticalIssues"][0]["affectedVersion"] == "2.0"
    assert "priorityActions" in dumped


def test_comparison_matrix_skips_bad_scores() -> None:
    result = ComparisonResult.model_validate(
        {
            "comparisonMatrix": {
                "Features": {"A": "7", "B": "great"},
                "Support": "n/a",
            },
            "threats": "one threat",
            "executiveSummary": None,
        }
    )
    assert result.comparison_matrix == {"Features": {"A": 7.0}}
    assert result.threats == ["one threat"]
    assert result.executive_summary == ""


def test_non_finite_numbers_from_json_are_neutralised() -> None:
    document = json.loads(
        '{"criticalIssues": [{"title": null, "frequency": Infinity}],'
        ' "sentiment": {"positive": NaN, "negative": -Infinity, "neutral": 40},'
        ' "comparisonMatrix": {"stability": {"A": Infinity, "B": 7}}}'
    )

    result = AnalysisResult.model_validate(document)
    assert result.critical_issues[0].title == ""
    assert result.critical_issues[0].frequency == 0
    assert result.sentiment == Sentiment(positive=0.0, negative=0.0, neutral=40.0)

    comparison = ComparisonResult.model_validate(document)
    assert comparison.comparison_matrix == {"stability": {"B": 7.0}}
