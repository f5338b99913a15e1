"""Telavox webhook authentication strategies.

Telavox deployments authenticate webhooks in different ways depending on how
the webhook was configured, so every delivery is checked against an ordered
list of independent verifiers. The first verifier that accepts the request
wins. All of them compare against the organization's webhook secret.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Optional, Sequence

from call_intelligence.core.errors import AuthenticationError
from call_intelligence.core.security import hmac_sha256_hex, safe_compare

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-telavox-signature", "x-signature", "telavox-signature", "signature")
BODY_SECRET_FIELDS = ("WEBHOOK_SECRET", "webhook_secret", "webhookSecret")


class InboundWebhook:
    """The parts of an inbound delivery the verifiers look at."""

    def __init__(self, raw_body: bytes, headers: Mapping[str, str], payload: Mapping[str, Any]):
        self.raw_body = raw_body
        self.headers = headers
        self.payload = payload


class WebhookVerifier(ABC):
    """One way of proving a delivery came from Telavox."""

    name: str = "verifier"

    @abstractmethod
    def verify(self, webhook: InboundWebhook, secret: str) -> bool:
        """Return True when the delivery is authentic."""
        pass


class BearerTokenVerifier(WebhookVerifier):
    """Authorization: Bearer <secret>."""

    name = "bearer"

    def verify(self, webhook: InboundWebhook, secret: str) -> bool:
        header = webhook.headers.get("authorization") or ""
        if not header.startswith("Bearer "):
            return False
        return safe_compare(header[len("Bearer "):].strip(), secret)


class SignatureVerifier(WebhookVerifier):
    """
    HMAC-SHA256 of the raw body in a signature header.

    Accepted formats: plain hex, ``sha256=<hex>`` and comma separated lists
    such as ``t=<ts>,v1=<hex>``.
    """

    name = "signature"

    def verify(self, webhook: InboundWebhook, secret: str) -> bool:
        signature = self._find_signature(webhook.headers)
        if not signature:
            return False

        expected = hmac_sha256_hex(secret, webhook.raw_body)
        return any(safe_compare(candidate, expected) for candidate in self.candidates(signature))

    @staticmethod
    def _find_signature(headers: Mapping[str, str]) -> Optional[str]:
        for header in SIGNATURE_HEADERS:
            value = headers.get(header)
            if value:
                return value.strip()
        return None

    @staticmethod
    def candidates(signature: str) -> Iterable[str]:
        """Digest values a signature header may carry."""
        yield signature
        if signature.startswith("sha256="):
            yield signature[len("sha256="):]
        if "," in signature:
            for part in signature.split(","):
                part = part.strip()
                if part.startswith("v1=") or part.startswith("sha256="):
                    yield part.split("=", 1)[1]


class BodySecretVerifier(WebhookVerifier):
    """Secret echoed back in the JSON body."""

    name = "body_secret"

    def verify(self, webhook: InboundWebhook, secret: str) -> bool:
        for field in BODY_SECRET_FIELDS:
            value = webhook.payload.get(field)
            if isinstance(value, str) and safe_compare(value, secret):
                return True
        return False


DEFAULT_VERIFIERS: Sequence[WebhookVerifier] = (
    BearerTokenVerifier(),
    SignatureVerifier(),
    BodySecretVerifier(),
)


def authenticate(
    webhook: InboundWebhook,
    secret: Optional[str],
    verifiers: Sequence[WebhookVerifier] = DEFAULT_VERIFIERS,
) -> str:
    """
    Authenticate a delivery against the org secret.

    Returns:
        Name of the verifier that accepted the request

    Raises:
        AuthenticationError: No secret is configured or no verifier matched
    """
    if not secret:
        raise AuthenticationError("No webhook secret configured for organization")

    for verifier in verifiers:
        if verifier.verify(webhook, secret):
            logger.debug(f"[TELEPHONY AUTH] Accepted via {verifier.name}")
            return verifier.name

    raise AuthenticationError("No authentication method matched")
