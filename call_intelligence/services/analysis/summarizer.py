"""Transcript analysis with an optional OpenAI summary."""
import logging
from typing import Optional

from openai import AsyncOpenAI

from call_intelligence.db.models import CallSession
from call_intelligence.services.analysis.conversation import ConversationAnalysis, analyze_conversation
from call_intelligence.services.persistence.flags import FeatureFlags

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_PROMPT = "Summarize this call: {transcription}"


def build_summary_prompt(template: Optional[str], transcript: str, session: CallSession) -> str:
    outbound = session.direction == "OUTBOUND"
    customer_phone = session.to_number if outbound else session.from_number
    return (
        (template or DEFAULT_SUMMARY_PROMPT)
        .replace("{agent_name}", session.agent_user_id or "Agent")
        .replace("{customer_phone}", customer_phone or "Unknown")
        .replace("{call_direction}", "Outgoing" if outbound else "Incoming")
        .replace("{transcription}", transcript)
    )


class TranscriptAnalyzer:
    """Heuristic analysis, with the summary generated by OpenAI when a key is configured."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini"):
        self.model = model
        self.client = AsyncOpenAI(api_key=api_key) if api_key else None

    async def analyze(self, transcript: str, session: CallSession, flags: FeatureFlags) -> ConversationAnalysis:
        analysis = analyze_conversation(transcript, flags.vocabulary_replacements)
        if self.client is None:
            return analysis

        prompt = build_summary_prompt(flags.summary_prompt, transcript, session)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
            summary = (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.warning(
                f"[ANALYSIS] OpenAI summary failed, keeping heuristic summary - CallId: {session.call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )
            return analysis

        if summary:
            analysis.summary = summary
        return analysis
