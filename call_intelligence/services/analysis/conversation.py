"""Keyword heuristics for call transcripts."""
import logging
import re
from typing import Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEAL_STAGES = [
    "Prospecting",
    "Qualification",
    "Needs Analysis",
    "Proposal",
    "Negotiation",
    "Closing",
    "Won",
    "Lost",
]

COMPETITOR_KEYWORDS = [
    "competitor",
    "rival",
    "alternative",
    "other platform",
    "another solution",
    "different system",
]

POSITIVE_WORDS = ["great", "excellent", "interested", "perfect", "love", "amazing", "good", "happy"]
NEGATIVE_WORDS = ["bad", "terrible", "hate", "disappointed", "problem", "issue", "concerned", "worried"]
KEY_POINT_MARKERS = ["needs", "challenge", "requirement", "priority", "budget", "timeline"]

COMPANY_PATTERN = re.compile(r"(?:using|with|from|at)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)")


class ConversationAnalysis(BaseModel):
    """What we extract from a transcript."""

    sentiment: str = "neutral"
    key_points: List[str] = []
    deal_stage: Optional[str] = None
    competitor_mentions: List[str] = []
    next_steps: List[str] = []
    summary: str = ""

    def insights(self) -> Dict[str, object]:
        """JSON stored on the call session."""
        return {
            "keyPoints": self.key_points,
            "nextSteps": self.next_steps,
            "dealStage": self.deal_stage,
            "competitorMentions": self.competitor_mentions,
        }


def apply_vocabulary(transcript: str, replacements: Dict[str, str]) -> str:
    """Whole-word, case-insensitive replacement of commonly misheard terms."""
    for source, target in replacements.items():
        if not source:
            continue
        pattern = re.compile(rf"\b{re.escape(source)}\b", re.IGNORECASE)
        transcript = pattern.sub(lambda _: target, transcript)
    return transcript


def analyze_sentiment(text: str) -> str:
    lower = text.lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lower)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lower)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def extract_key_points(lines: List[str]) -> List[str]:
    points = [line[:100] for line in lines if any(marker in line for marker in KEY_POINT_MARKERS)]
    return points[:5]


def detect_deal_stage(text: str) -> str:
    lower = text.lower()
    for stage in DEAL_STAGES:
        if stage.lower() in lower:
            return stage

    if "how much" in lower or "price" in lower:
        return "Negotiation"
    if "schedule" in lower or "implement" in lower:
        return "Closing"
    if "tell me more" in lower or "interested" in lower:
        return "Qualification"
    return "Prospecting"


def find_competitor_mentions(text: str) -> List[str]:
    lower = text.lower()
    mentions = [keyword for keyword in COMPETITOR_KEYWORDS if keyword in lower]
    mentions += [match.group(0) for match in COMPANY_PATTERN.finditer(text)][:3]
    return list(dict.fromkeys(mentions))


def generate_next_steps(sentiment: str, deal_stage: Optional[str], key_points: List[str]) -> List[str]:
    steps = []
    if sentiment == "positive":
        steps += ["Schedule follow-up meeting", "Send proposal"]
    elif sentiment == "negative":
        steps += ["Address concerns", "Schedule call to understand objections"]

    if deal_stage == "Closing":
        steps += ["Prepare contract", "Coordinate implementation timeline"]

    if key_points:
        steps.append("Prepare case studies addressing key concerns")
    return steps


def generate_summary(text: str, key_points: List[str]) -> str:
    lines = text.split("\n")
    first_turn = " ".join(lines[:3])
    last_turn = " ".join(lines[-3:])
    return (
        f"Conversation started with: {first_turn[:80]}... "
        f"Key points discussed: {', '.join(key_points)}. "
        f"Concluded with: {last_turn[:80]}..."
    )


def analyze_conversation(transcript: str, replacements: Optional[Dict[str, str]] = None) -> ConversationAnalysis:
    """Run every heuristic over a flattened "role: message" transcript."""
    text = apply_vocabulary(transcript, replacements or {})
    lines = [line for line in text.split("\n") if line.strip()]

    sentiment = analyze_sentiment(text)
    key_points = extract_key_points(lines)
    deal_stage = detect_deal_stage(text)

    return ConversationAnalysis(
        sentiment=sentiment,
        key_points=key_points,
        deal_stage=deal_stage,
        competitor_mentions=find_competitor_mentions(text),
        next_steps=generate_next_steps(sentiment, deal_stage, key_points),
        summary=generate_summary(text, key_points),
    )
