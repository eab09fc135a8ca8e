"""Prescription drafting and checking via the OpenAI chat completions API."""

from typing import Optional

from fastapi import Request
from openai import OpenAI

from config import LLM_MODEL, OPENAI_API_KEY

SYSTEM_PROMPT = (
    "You are a medical AI assistant that generates prescriptions based on "
    "symptoms and medical history."
)
VALIDATOR_PROMPT = "You are a medical prescription validator."


class AIPrescriptionError(Exception):
    """Raised when the upstream model returns nothing usable."""
    pass


class AIPrescriptionService:
    def __init__(self, client: Optional[OpenAI] = None, model: str = LLM_MODEL):
        self._client = client
        self.model = model

    @property
    def client(self) -> OpenAI:
        # Built on first use so the API can start without a key
        if self._client is None:
            self._client = OpenAI(api_key=OPENAI_API_KEY)
        return self._client

    def _complete(self, system: str, user: str) -> Optional[str]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content

    def generate(self, symptoms: str, medical_history: str) -> str:
        """Return the model's prescription text verbatim.

        Upstream errors (auth, rate limit, connection) are not caught here.
        """
        prompt = (
            f"Patient symptoms: {symptoms}\n"
            f"Medical history: {medical_history}\n"
            "Generate a prescription with appropriate medicines, dosages, and duration."
        )
        return self._complete(SYSTEM_PROMPT, prompt) or ""

    def validate(self, prescription: str) -> bool:
        """Ask the model to judge a prescription and keyword-match its reply.

        Any reply containing "valid" or "safe" counts as a pass, so
        "This prescription is not valid." also returns True. This is a known
        false positive and is kept as-is until a structured verdict replaces it.
        """
        reply = self._complete(
            VALIDATOR_PROMPT,
            f"Validate this prescription for safety and appropriateness:\n{prescription}",
        )
        if not reply:
            raise AIPrescriptionError("AI did not return a valid response.")
        lowered = reply.lower()
        return "valid" in lowered or "safe" in lowered


def get_ai_service(request: Request) -> AIPrescriptionService:
    return request.app.state.ai_service
