"""Turns a ReviewResult into an approval decision"""
from dataclasses import dataclass, field

from conductor.orchestration.models import ReviewIssue, ReviewResult


@dataclass
class ReviewDecision:
    """Aggregated decision over one review"""
    decision: str  # "accept" | "accept_with_suggestions" | "needs_approval"
    reason: str
    blocking_issues: list[ReviewIssue] = field(default_factory=list)
    suggestions: list[ReviewIssue] = field(default_factory=list)

    @property
    def needs_approval(self) -> bool:
        return self.decision == "needs_approval"


class ReviewAggregator:
    """Maps reviewer output onto the execution's terminal status"""

    SEVERITY_ORDER = {"error": 0, "warning": 1, "info": 2}

    def decide(self, review: ReviewResult | None) -> ReviewDecision:
        if review is None:
            return ReviewDecision(decision="accept", reason="Review not required")

        issues = sorted(review.issues, key=lambda i: self.SEVERITY_ORDER.get(i.severity, 3))
        errors = [i for i in issues if i.severity == "error"]
        others = [i for i in issues if i.severity != "error"]

        if errors:
            return ReviewDecision(
                decision="needs_approval",
                reason=f"Reviewer found {len(errors)} error(s)",
                blocking_issues=errors,
                suggestions=others,
            )
        if not review.approved:
            return ReviewDecision(
                decision="needs_approval",
                reason=review.summary or "Reviewer did not approve the changes",
                suggestions=others,
            )
        if others:
            return ReviewDecision(
                decision="accept_with_suggestions",
                reason="Approved with minor suggestions",
                suggestions=others,
            )
        return ReviewDecision(decision="accept", reason="Reviewer approved")
