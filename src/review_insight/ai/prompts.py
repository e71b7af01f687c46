"""Prompt builders for single-app analysis and multi-app comparison."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from review_insight.config.store_defaults import MAX_REVIEWS_FOR_AI
from review_insight.scrapers.types import ScrapedReview

SINGLE_APP_SYSTEM_PROMPT = (
    "You are a professional product analyst and UX expert specializing in app review analysis."
)

COMPARISON_SYSTEM_PROMPT = (
    "You are a competitive analysis expert who helps product teams understand their "
    "position in the market by analyzing user feedback."
)

COMPARISON_REVIEWS_PER_APP = 50

CRITICAL_CATEGORIES: tuple[str, ...] = (
    "App Crashes & Freezes",
    "Login/Authentication Problems",
    "Payment/Billing Issues",
    "Data Loss/Sync Problems",
    "Server/Connection Errors",
    "Battery Drain Issues",
    "Memory/CPU Performance",
    "Security/Privacy Concerns",
    "Installation/Update Problems",
    "Compatibility Issues (iOS/Android version)",
    "Account Management Issues",
    "Broken Core Features",
    "Corrupted Data/Database Issues",
    "Timeout/Slow Response Issues",
    "Error Messages & Bugs",
)

EXPERIENCE_CATEGORIES: tuple[str, ...] = (
    "User Interface (UI) Confusion",
    "Navigation/Menus Problems",
    "Search/Filter Issues",
    "Loading Speed/Performance",
    "Font/Text Readability",
    "Button/Control Problems",
    "Gesture/Touch Issues",
    "Onboarding/Tutorial Problems",
    "Settings/Configuration Issues",
    "Notifications/Alerts Problems",
    "Offline Mode Issues",
    "Export/Import Problems",
)

FEATURE_CATEGORIES: tuple[str, ...] = (
    "New Feature Requests",
    "Integration/API Requests",
    "Customization/Personalization",
    "Social/Sharing Features",
    "Analytics/Reporting Features",
    "Accessibility Features",
    "Automation/Workflow Features",
    "Premium/Paid Feature Requests",
)

_ANALYSIS_SCHEMA = """{
  "criticalIssues": [
    {
      "title": "Specific issue category name",
      "frequency": number (how many times mentioned),
      "severity": "high" | "medium" | "low",
      "examples": ["exact quote from review 1", "exact quote from review 2", "... up to 30 quotes"],
      "affectedVersion": "version number if mentioned"
    }
  ],
  "experienceIssues": [
    {
      "title": "Specific UX/UI issue category",
      "frequency": number,
      "examples": ["exact quote from review 1", "... up to 25 quotes"]
    }
  ],
  "featureRequests": [
    {
      "title": "Specific feature request category",
      "frequency": number,
      "examples": ["exact quote from review 1", "... up to 25 quotes"]
    }
  ],
  "sentiment": {
    "positive": 0-100,
    "negative": 0-100,
    "neutral": 0-100
  },
  "insights": "Comprehensive paragraph summarizing key findings across all categories with specific metrics and trends",
  "priorityActions": ["Specific action 1", "Specific action 2", "... 7 actions"]
}"""


@dataclass
class AppReviews:
    """Reviews of one app, labelled with the app's display name."""

    app_name: str
    reviews: Sequence[ScrapedReview]


def _render_review(review: ScrapedReview) -> str:
    lines = [
        f"Rating: {review.rating}⭐",
        f"Date: {review.date.strftime('%Y-%m-%d')}",
        f"Content: {review.content}",
    ]
    if review.app_version and review.app_version != "Unknown":
        lines.append(f"Version: {review.app_version}")
    return "\n".join(lines)


def _numbered(categories: Sequence[str], start: int) -> str:
    return "\n".join(f"{start + i}. {name}" for i, name in enumerate(categories))


def build_single_app_prompt(
    reviews: Sequence[ScrapedReview], max_reviews: int = MAX_REVIEWS_FOR_AI
) -> str:
    """Build the user prompt asking for a categorised analysis of *reviews*.

    The header counts every review per rating band; only the first
    *max_reviews* are quoted in the body.
    """
    critical = sum(1 for r in reviews if r.rating <= 2)
    experience = sum(1 for r in reviews if r.rating == 3)
    positive = sum(1 for r in reviews if r.rating >= 4)
    quoted = list(reviews)[:max_reviews]
    reviews_text = "\n---\n".join(_render_review(r) for r in quoted)

    first_experience = len(CRITICAL_CATEGORIES) + 1
    first_feature = first_experience + len(EXPERIENCE_CATEGORIES)

    return f"""COMPREHENSIVE APP REVIEW ANALYSIS - INDUSTRY-GRADE INSIGHTS

REVIEW BREAKDOWN:
- Critical Issues (1-2⭐): {critical} reviews
- Experience Issues (3⭐): {experience} reviews
- Feature Requests (4-5⭐): {positive} reviews
- Total Reviews: {len(reviews)}

Reviews to analyze (sample of {len(quoted)} reviews):
{reviews_text}

ANALYSIS REQUIREMENTS:
- Identify 25-35 SPECIFIC issue categories
- Each category must have 15-30 exact user quotes
- Focus on granular, actionable insights
- Group similar issues into specific categories
- Include frequency and severity analysis

SPECIFIC ISSUE CATEGORIES TO IDENTIFY:

CRITICAL ISSUES (1-2⭐):
{_numbered(CRITICAL_CATEGORIES, 1)}

EXPERIENCE ISSUES (3⭐):
{_numbered(EXPERIENCE_CATEGORIES, first_experience)}

FEATURE REQUESTS (4-5⭐):
{_numbered(FEATURE_CATEGORIES, first_feature)}

Please provide analysis in the following JSON format:
{_ANALYSIS_SCHEMA}

Respond with the JSON document only.
- Create specific, granular categories (not generic groupings)
- Each category must have at least 10-15 real user quotes
- Include exact frequency counts
- Focus on actionable insights developers can use immediately

CRITICAL: Do not group all issues into 3-5 broad categories. Create 20-30 specific issue types, each with multiple examples."""


def _render_short(reviews: Sequence[ScrapedReview]) -> str:
    return "\n".join(
        f"{r.rating}⭐: {r.content}" for r in list(reviews)[:COMPARISON_REVIEWS_PER_APP]
    )


def build_comparison_prompt(apps_reviews: Sequence[AppReviews]) -> str:
    """Build a SWOT prompt where the first entry is the user's own app.

    Raises:
        ValueError: If fewer than two apps are given.
    """
    if len(apps_reviews) < 2:
        raise ValueError("a comparison needs at least two apps")

    target, competitors = apps_reviews[0], apps_reviews[1:]
    parts = [
        "Perform a competitive analysis using SWOT framework based on user reviews.",
        "",
        f"YOUR APP: {target.app_name}",
        "Reviews sample:",
        _render_short(target.reviews),
        "",
        "COMPETITORS:",
    ]
    for competitor in competitors:
        parts.extend(["", f"{competitor.app_name}:", _render_short(competitor.reviews)])

    parts.append(
        f"""
Provide analysis in JSON format:
{{
  "executiveSummary": "One sentence summary",
  "strengths": ["What your app does well compared to competitors"],
  "weaknesses": ["Where your app falls short"],
  "opportunities": ["Competitor weaknesses you can exploit"],
  "threats": ["Competitor strengths that threaten you"],
  "comparisonMatrix": {{
    "Features": {{"{target.app_name}": 7, "{competitors[0].app_name}": 9}},
    "Stability": {{}},
    "UI/UX": {{}},
    "Performance": {{}},
    "Support": {{}}
  }},
  "actionableInsights": [
    "Immediate action items based on analysis"
  ]
}}

Be specific and quote actual user feedback where relevant. Respond with the JSON document only."""
    )
    return "\n".join(parts)
