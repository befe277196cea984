"""
Patient Reply Drafting using Azure OpenAI
Drafts doctor replies that are staged for review before sending
"""

from openai import AzureOpenAI, OpenAI
from typing import Dict, List, Optional
import structlog

from staging_service.config import settings

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are a clinical messaging assistant drafting replies from a doctor to a patient.

Rules:
- Write in plain, warm, professional language the patient can understand
- Be concise (at most a few short paragraphs)
- Never invent diagnoses, doses or test results that are not in the conversation
- If information is missing (e.g. pharmacy, allergies), ask for it
- Return only the message text, no explanations or signatures"""


class ReplyDraftService:
    """Drafts patient replies with GPT-4"""

    def __init__(self):
        if settings.azure_openai_endpoint and settings.azure_openai_api_key:
            self.client = AzureOpenAI(
                azure_endpoint=settings.azure_openai_endpoint,
                api_key=settings.azure_openai_api_key,
                api_version=settings.azure_openai_api_version
            )
            self.model = settings.azure_openai_deployment
        else:
            self.client = OpenAI(api_key=settings.openai_api_key)
            self.model = "gpt-4-turbo-preview"

    async def draft_reply(
        self,
        patient_name: str,
        messages: List[Dict],
        instructions: Optional[str] = None
    ) -> str:
        """Draft a reply to the latest patient message"""

        history = "\n".join(
            f"{'Patient' if m.get('isFromPatient') else 'Doctor'}: {m.get('content', '')}"
            for m in messages
        )

        user_prompt = f"""Patient: {patient_name}

Conversation so far:
{history or '(no previous messages)'}

{f"Doctor's instructions for this reply: {instructions}" if instructions else ""}
"""

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=0.3
            )

            draft = (response.choices[0].message.content or "").strip()
            logger.info("Reply drafted", patient_name=patient_name, length=len(draft))
            return draft

        except Exception as e:
            logger.error("Reply drafting failed", error=str(e))
            raise
