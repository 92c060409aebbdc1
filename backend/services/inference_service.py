"""AI title and content generation for notes over a chat-completions endpoint."""
import logging
from typing import Optional, List, Dict

import openai

import settings
from models import utc_now
from repositories import repos
from services.event_manager import broadcast_title_update

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic-claude-3-opus"

TITLE_PROMPT = (
    "You are a helpful assistant that generates concise, descriptive titles for notes. "
    "Generate a title that is 2-8 words long and captures the main topic or purpose of the "
    "note content. Return only the title, no quotes or additional text."
)

CONTENT_PROMPT = (
    "Write a one- or two-sentence random note in a casual-professional tone with an em dash and a "
    "short action takeaway. Do not include any titles, headings, formatting, preamble, or conclusion."
)


class InferenceService:
    def __init__(self):
        self._client: Optional[openai.AsyncOpenAI] = None
        self._api_key: Optional[str] = None

    @property
    def client(self) -> openai.AsyncOpenAI:
        api_key = settings.DO_INFERENCE_API_KEY
        if not api_key:
            raise ValueError("DigitalOcean Inference API key is not configured")
        if self._client is None or self._api_key != api_key:
            self._client = openai.AsyncOpenAI(api_key=api_key, base_url=settings.INFERENCE_BASE_URL)
            self._api_key = api_key
        return self._client

    async def _complete(self, messages: List[Dict[str, str]], max_tokens: int = 100, temperature: float = 0.7) -> str:
        completion = await self.client.chat.completions.create(
            model=DEFAULT_MODEL,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        content = None
        if completion and completion.choices:
            content = (completion.choices[0].message.content or "").strip()
        if not content:
            raise ValueError("Failed to extract content from AI response")
        return content

    async def generate_title(self, content: str) -> str:
        if not content or not content.strip():
            raise ValueError("Content is required to generate a title")
        return await self._complete(
            [
                {"role": "system", "content": TITLE_PROMPT},
                {"role": "user", "content": f"Generate a title for this note content: {content}"},
            ],
            max_tokens=50,
            temperature=0.7,
        )

    async def generate_content(self) -> str:
        return await self._complete(
            [
                {"role": "system", "content": CONTENT_PROMPT},
                {"role": "user", "content": "Generate helpful note content based on the system prompt."},
            ],
            max_tokens=150,
            temperature=0.8,
        )


def generate_timestamp_title() -> str:
    return f"Note - {utc_now().strftime('%m/%d/%Y')}"


async def generate_title_with_fallback(content: str) -> str:
    if not settings.has_ai_configured():
        raise ValueError("AI title generation is not configured")
    try:
        return await inference_service.generate_title(content)
    except Exception as e:
        logger.warning(f"AI title generation failed, using timestamp fallback: {e}")
        return generate_timestamp_title()


async def generate_title_in_background(note_id: str, content: str, user_id: str) -> None:
    """BackgroundTasks entry point: retitle the note and tell the owner's event stream."""
    if not settings.has_ai_configured():
        return
    try:
        title = await generate_title_with_fallback(content)
        await repos.note.update(note_id, {"title": title})
        broadcast_title_update(note_id, title, user_id)
    except Exception as e:
        # note keeps its timestamp title
        logger.error(f"Failed to generate title for note {note_id}: {e}")


inference_service = InferenceService()
