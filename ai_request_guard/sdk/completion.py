"""
Completion service for the symptom-checker workflow.

Builds role-specific requests (diagnosis, follow-up, summary, report,
transcription) and runs every one of them through the request orchestrator.
"""

import logging
import math
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.cancellation import CancellationToken
from ..core.cascade import CallDescriptor
from ..core.errors import ExhaustedError
from ..core.orchestrator import RequestOrchestrator
from ..core.streaming import Sink
from ..core.usage import EndpointKind
from .openai_client import Messages, OpenAIChatClient

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a medical AI assistant."
DEFAULT_TEMPERATURE = 0.7
MAX_DIAGNOSIS_TOKENS = 3000
SUMMARY_TOKEN_CAP = 400
FOLLOW_UP_TOKEN_CAP = 600
LEGACY_MODEL = "gpt-3.5-turbo"
LEGACY_MODEL_TOKEN_CAP = 2000
MAX_HISTORY_TURNS = 5
TRANSCRIPTION_FALLBACK_TARGETS = ("gpt-4o-transcribe",)
# a bare WAV header is 44 bytes
MIN_AUDIO_BYTES = 44

CONDENSE_SYSTEM_PROMPT = (
    "Condense medical information with clear headings. Use double line breaks "
    "before headings, keep bullet points together."
)
CONDENSE_FAILURE_MESSAGE = "Failed to condense diagnosis. Please see the detailed response."
CONDENSE_PROMPT_TEMPLATE = """Condense this medical diagnosis into key points:

Original patient information:
{prompt}

Detailed diagnosis:
{response}

Include:
1. Most likely conditions (max 3)
2. Key symptoms identified
3. Recommended next steps
4. Any critical warnings

Format with clear headings and bullet points. Keep under 200 words."""


class ModelRole(Enum):
    """What a completion request is for."""
    DIAGNOSIS = "diagnosis"
    FOLLOW_UP = "follow_up"
    SUMMARY = "summary"
    REPORT = "report"
    TRANSCRIPTION = "transcription"


ROLE_TEMPERATURES: Dict[ModelRole, float] = {
    ModelRole.SUMMARY: 0.5,
    ModelRole.FOLLOW_UP: 0.6,
}


def temperature_for(role: ModelRole) -> float:
    """Sampling temperature used for a role."""
    return ROLE_TEMPERATURES.get(role, DEFAULT_TEMPERATURE)


def token_budget(role: ModelRole, prompt: str, max_tokens: int) -> int:
    """Scale the token budget to the request.

    Diagnoses grow with prompt length (a third of its characters, 1.2x when
    the patient lists preexisting or additional conditions) up to 3000.
    Summaries and follow-ups are capped at 400 and 600 tokens.
    """
    if role is ModelRole.DIAGNOSIS:
        factor = 1.2 if "preexisting" in prompt or "additional" in prompt else 1.0
        scaled = math.floor(len(prompt) / 3 * factor)
        return min(MAX_DIAGNOSIS_TOKENS, max(max_tokens, scaled))
    if role is ModelRole.SUMMARY:
        return min(max_tokens, SUMMARY_TOKEN_CAP)
    if role is ModelRole.FOLLOW_UP:
        return min(max_tokens, FOLLOW_UP_TOKEN_CAP)
    return max_tokens


def fallback_tokens(model: str, tokens: int) -> int:
    """Token budget for a fallback model; the legacy model is capped."""
    if model == LEGACY_MODEL:
        return min(tokens, LEGACY_MODEL_TOKEN_CAP)
    return tokens


def advisory_message(tier: int, model: str, error: str = "") -> str:
    """User-facing notice shown when a request moves to a fallback tier."""
    detail = f": {error}" if error else ""
    if tier == 0:
        return (
            f"The primary model encountered an issue{detail}. "
            f"Switching to {model} as a fallback."
        )
    return (
        f"The primary model and {tier} fallback model(s) failed{detail}. "
        f"Using {model} as a last resort. Response accuracy may be affected."
    )


class ConversationHistory:
    """Bounded follow-up context.

    Holds at most ``max_turns`` user/assistant exchanges plus an optional
    condensed summary of the initial diagnosis.
    """

    def __init__(self, max_turns: int = MAX_HISTORY_TURNS):
        if max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        self.max_turns = max_turns
        self.summary: Optional[str] = None
        self._messages: Messages = []

    def reset(self, user_message: str, assistant_message: str) -> None:
        """Start a new conversation from an initial diagnosis."""
        self.summary = None
        self._messages = [
            {"role": "user", "content": user_message},
            {"role": "assistant", "content": assistant_message},
        ]

    def add(self, user_message: str, assistant_message: str) -> None:
        """Append one exchange, dropping the oldest beyond the turn limit."""
        self._messages.append({"role": "user", "content": user_message})
        self._messages.append({"role": "assistant", "content": assistant_message})
        max_messages = self.max_turns * 2
        if len(self._messages) > max_messages:
            self._messages = self._messages[-max_messages:]

    def messages(self) -> Messages:
        """Copy of the retained messages, oldest first."""
        return [dict(message) for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)


class CompletionService:
    """Role-aware completion requests routed through the orchestrator."""

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        client: OpenAIChatClient,
        history: Optional[ConversationHistory] = None,
        advisory: Optional[Callable[[str], Any]] = None,
    ):
        """Initialize the service.

        Args:
            orchestrator: Orchestrator every request runs through
            client: Builder for executable calls
            history: Follow-up context (a fresh one if omitted)
            advisory: Receives a notice whenever a request falls back
        """
        self.orchestrator = orchestrator
        self.client = client
        self.history = history or ConversationHistory()
        self.advisory = advisory

    def build_messages(self, prompt: str, role: ModelRole, system_prompt: str) -> Messages:
        """Assemble the chat messages for one request."""
        messages = [{"role": "system", "content": system_prompt}]
        if role is ModelRole.FOLLOW_UP and len(self.history):
            if self.history.summary:
                messages.append({
                    "role": "system",
                    "content": f"Previous diagnosis summary: {self.history.summary}",
                })
            messages.extend(self.history.messages())
        messages.append({"role": "user", "content": prompt})
        return messages

    async def complete(
        self,
        prompt: str,
        role: ModelRole = ModelRole.DIAGNOSIS,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int = 1000,
        sink: Optional[Sink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Run one completion, streaming into ``sink`` when given.

        While streaming, fallback tier 0 streams as well; deeper tiers use a
        plain request whose full text reaches the sink in one delivery.

        Raises:
            ValueError: If prompt is empty or role is TRANSCRIPTION
            ExhaustedError: If every target exhausted its retries
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")
        if role is ModelRole.TRANSCRIPTION:
            raise ValueError("use transcribe() for transcription requests")

        model = self.orchestrator.config.model_for(role.value)
        tokens = token_budget(role, prompt, max_tokens)
        temperature = temperature_for(role)
        messages = self.build_messages(prompt, role, system_prompt)
        streaming = sink is not None

        logger.info(
            "Using %s call for %s model %s with %d tokens",
            "streaming" if streaming else "regular", role.value, model, tokens,
        )

        if streaming:
            call = self.client.stream_call(model, messages, temperature, tokens)
        else:
            call = self.client.chat_call(model, messages, temperature, tokens)

        def fallback_factory(target: str, tier: int):
            logger.info("Attempting fallback with %s model (level %d)", target, tier)
            budget = fallback_tokens(target, tokens)
            if streaming and tier == 0:
                return self.client.stream_call(
                    target, messages, temperature, budget, label="Fallback API request",
                )
            return self.client.chat_call(
                target, messages, temperature, budget, label="Fallback API request",
            )

        return await self.orchestrator.execute(
            CallDescriptor(EndpointKind.CHAT, model),
            call,
            fallback_factory=fallback_factory,
            sink=sink,
            notifier=self._notifier(self.orchestrator.config.fallback_targets),
            cancel=cancel,
        )

    async def diagnose(
        self,
        prompt: str,
        sink: Optional[Sink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Initial diagnosis; resets the conversation history."""
        text = await self.complete(prompt, ModelRole.DIAGNOSIS, sink=sink, cancel=cancel)
        self.history.reset(prompt, text)
        return text

    async def follow_up(
        self,
        question: str,
        sink: Optional[Sink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Follow-up question answered in the context of the history."""
        text = await self.complete(question, ModelRole.FOLLOW_UP, sink=sink, cancel=cancel)
        self.history.add(question, text)
        return text

    async def condense_diagnosis(
        self,
        initial_prompt: str,
        initial_response: str,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Condense a diagnosis into key points and keep it as the summary.

        Returns a fixed apology instead of raising when the cascade is
        exhausted, since the detailed diagnosis is still available.
        """
        prompt = CONDENSE_PROMPT_TEMPLATE.format(prompt=initial_prompt, response=initial_response)
        try:
            summary = await self.complete(
                prompt, ModelRole.SUMMARY, CONDENSE_SYSTEM_PROMPT, max_tokens=350, cancel=cancel,
            )
        except ExhaustedError as e:
            logger.error("Error condensing diagnosis: %s", e)
            return CONDENSE_FAILURE_MESSAGE
        self.history.summary = summary
        return summary

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.wav",
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Transcribe recorded audio.

        Raises:
            ValueError: If the audio is too small or the transcript is empty
            ExhaustedError: If every transcription model failed
        """
        if not audio or len(audio) <= MIN_AUDIO_BYTES:
            raise ValueError("No valid audio data to transcribe. Please record audio first.")

        model = self.orchestrator.config.model_for(ModelRole.TRANSCRIPTION.value)
        logger.info("Transcribing audio file: %s, size: %d bytes", filename, len(audio))

        text = await self.orchestrator.execute(
            CallDescriptor(EndpointKind.TRANSCRIPTION, model),
            self.client.transcription_call(audio, filename, model),
            fallback_factory=lambda target, tier: self.client.transcription_call(audio, filename, target),
            notifier=self._notifier(TRANSCRIPTION_FALLBACK_TARGETS),
            cancel=cancel,
            fallback_targets=TRANSCRIPTION_FALLBACK_TARGETS,
        )
        if not text or not text.strip():
            raise ValueError("Transcription returned empty text. Please speak more clearly or try again.")
        return text.strip()

    def _notifier(self, targets):
        if self.advisory is None:
            return None

        def notify(tier: int, error: str) -> Any:
            return self.advisory(advisory_message(tier, targets[tier], error))

        return notify
