"""
Rule-based lead scoring.

Each matching rule contributes a signed delta; the total is clamped to 0..100.
"""
from dataclasses import dataclass

from leadflow.models.lead import Lead


HIGH_INTENT_KEYWORDS = ("quote", "pricing", "price", "estimate", "book", "appointment", "schedule", "asap")
SPAM_KEYWORDS = ("backlinks", "seo services", "guest post", "rank your site", "casino")
LOCAL_CITIES = ("riverside", "corona", "eastvale", "norco")

MIN_SCORE = 0
MAX_SCORE = 100


@dataclass(frozen=True)
class ScoreReason:
    rule: str
    delta: int

    def to_dict(self) -> dict:
        return {"rule": self.rule, "delta": self.delta}


def contains_keyword(value: str | None, keywords) -> bool:
    if not value or not value.strip():
        return False
    lowered = value.lower()
    return any(keyword in lowered for keyword in keywords)


def calculate_score(lead: Lead) -> tuple[int, list[ScoreReason]]:
    """
    Score a lead.
    
    Returns:
        (score clamped to 0..100, reasons in the order the rules matched)
    """
    reasons: list[ScoreReason] = []

    has_email = bool(lead.email and lead.email.strip())
    has_phone = bool(lead.phone and lead.phone.strip())

    if has_email:
        reasons.append(ScoreReason("HasEmail", 20))
    if has_phone:
        reasons.append(ScoreReason("HasPhone", 20))
    if contains_keyword(lead.message, HIGH_INTENT_KEYWORDS):
        reasons.append(ScoreReason("HighIntentKeywords", 15))

    source = (lead.source or "").lower()
    if source == "google_ads":
        reasons.append(ScoreReason("SourceWeightGoogleAds", 10))
    elif source == "referral":
        reasons.append(ScoreReason("SourceWeightReferral", 8))

    if contains_keyword(lead.metadata_json, LOCAL_CITIES):
        reasons.append(ScoreReason("LocalAreaMatch", 10))
    if contains_keyword(lead.message, SPAM_KEYWORDS):
        reasons.append(ScoreReason("SpamPenalty", -30))
    if not has_email and not has_phone:
        reasons.append(ScoreReason("MissingContactPenalty", -15))

    total = sum(reason.delta for reason in reasons)
    return max(MIN_SCORE, min(MAX_SCORE, total)), reasons
