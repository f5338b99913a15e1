"""External service clients used by the pipeline."""
from call_intelligence.core.config import Settings
from call_intelligence.services.analysis.summarizer import TranscriptAnalyzer
from call_intelligence.services.integrations.elevenlabs import ElevenLabsClient
from call_intelligence.services.integrations.hubspot import HubSpotClient
from call_intelligence.services.integrations.slack import SlackClient
from call_intelligence.services.integrations.storage import RecordingStorage
from call_intelligence.services.telephony.client import TelavoxClient


class Integrations:
    """Bundle of clients handed to webhooks and workers."""

    def __init__(
        self,
        telavox: TelavoxClient,
        slack: SlackClient,
        hubspot: HubSpotClient,
        transcription: ElevenLabsClient,
        storage: RecordingStorage,
        analyzer: TranscriptAnalyzer,
    ):
        self.telavox = telavox
        self.slack = slack
        self.hubspot = hubspot
        self.transcription = transcription
        self.storage = storage
        self.analyzer = analyzer

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "Integrations":
        return cls(
            telavox=TelavoxClient(app_settings.telavox_api_base),
            slack=SlackClient(app_settings.slack_api_base),
            hubspot=HubSpotClient(app_settings.hubspot_access_token, app_settings.hubspot_api_base),
            transcription=ElevenLabsClient(app_settings.elevenlabs_api_key, app_settings.elevenlabs_api_base),
            storage=RecordingStorage(
                app_settings.storage_url,
                app_settings.storage_service_key,
                app_settings.storage_bucket,
            ),
            analyzer=TranscriptAnalyzer(app_settings.openai_api_key, app_settings.openai_model),
        )

    async def close(self) -> None:
        for client in (self.telavox, self.slack, self.hubspot, self.transcription, self.storage):
            await client.close()
