import logging
from dataclasses import dataclass

from notera.clients.gemini_client import GeminiClient
from notera.config import settings
from notera.database import get_async_conn
from notera.errors import EmptyAIResponse
from notera.models import Lesson
from notera.recording.audio_utils import encode_base64_chunked, mime_type_for_key
from notera.repositories.lessons import LessonRepository
from notera.services.events import LessonEventHub
from notera.services.storage import AudioStore

logger = logging.getLogger(__name__)

TRANSCRIPTION_MARKER = "---TRANSKRIPTION---"
SUMMARY_MARKER = "---SAMMANFATTNING---"

SUMMARY_PLACEHOLDER = "Kunde inte skapa sammanfattning."
NO_AUDIO_TRANSCRIPTION = "[Ingen ljudfil tillgänglig för denna lektion. Titel: {title}]"
NO_AUDIO_SUMMARY = "Ingen sammanfattning tillgänglig - ljudfil saknas."

PROMPT_TEMPLATE = """Du transkriberar och sammanfattar en inspelad lektion. Återge bara det som faktiskt sägs i inspelningen. Lägg inte till egen kunskap, tolkningar, exempel eller antaganden om vad läraren menade.

DEL 1 - TRANSKRIPTION
- Ordagrann transkription av allt som sägs.
- Skriv på samma språk som talas i inspelningen. Översätt inte.
- Inga tidsstämplar. Skriv sammanhängande löptext.

DEL 2 - SAMMANFATTNING
- Markdown med rubriker (##) och punktlistor, cirka 200-400 ord.
- Endast information som nämns i inspelningen. Är något otydligt, skriv att det var otydligt.
- Skriv på samma språk som talas i inspelningen.

Lektion: {title}
Ämne: {subject}
Klass: {class_name}

Svara exakt i följande format:
{transcription_marker}
<transkription>

{summary_marker}
<sammanfattning>"""


def build_prompt(lesson: Lesson) -> str:
    return PROMPT_TEMPLATE.format(
        title=lesson.title,
        subject=lesson.subject or "Ej angivet",
        class_name=lesson.class_name or "Okänd klass",
        transcription_marker=TRANSCRIPTION_MARKER,
        summary_marker=SUMMARY_MARKER,
    )


def parse_ai_response(text: str) -> tuple[str, str]:
    """Split a model response into ``(transcription, summary)``.

    The transcription is whatever sits between the two markers (or runs to
    the end when the summary marker is missing).  Without a transcription
    marker, or with an empty section, the whole response is the
    transcription.  A missing or empty summary gets the placeholder.
    """
    start = text.find(TRANSCRIPTION_MARKER)
    if start == -1:
        return text.strip(), SUMMARY_PLACEHOLDER

    body = text[start + len(TRANSCRIPTION_MARKER):]
    split = body.find(SUMMARY_MARKER)
    if split == -1:
        transcription, summary = body.strip(), ""
    else:
        transcription = body[:split].strip()
        summary = body[split + len(SUMMARY_MARKER):].strip()
    return transcription or text.strip(), summary or SUMMARY_PLACEHOLDER


@dataclass
class ProcessingResult:
    lesson_id: str
    transcription_length: int
    summary_length: int
    superseded: bool = False

    def to_response(self) -> dict:
        body = {
            "success": True,
            "lessonId": self.lesson_id,
            "transcriptionLength": self.transcription_length,
            "summaryLength": self.summary_length,
        }
        if self.superseded:
            body["superseded"] = True
        return body


class LessonProcessor:
    """Turns a lesson's stored audio into transcription and summary.

    Each call is a complete, independent run: claim the lesson (status
    ``processing`` plus a fresh token), download, one model call, parse,
    then a single terminal write guarded by the token.  Any failure after
    the claim marks the lesson ``error`` on a best-effort basis and
    re-raises.
    """

    def __init__(
        self,
        audio_store: AudioStore,
        gemini: GeminiClient,
        events: LessonEventHub | None = None,
    ) -> None:
        self.audio_store = audio_store
        self.gemini = gemini
        self.events = events

    async def process(self, lesson_id: str) -> ProcessingResult:
        conn = await get_async_conn()
        try:
            lessons = LessonRepository(conn, self.events)
            lesson = await lessons.require(lesson_id, with_class=True)
            logger.info("Processing lesson: %s (%s)", lesson.title, lesson_id)

            token = await lessons.claim_for_processing(lesson_id)
            try:
                transcription, summary = await self._generate(lesson)
                applied = await lessons.complete(lesson_id, token, transcription, summary)
            except Exception:
                logger.exception("Error processing lesson %s", lesson_id)
                await self._mark_error(lessons, lesson_id, token)
                raise
        finally:
            await conn.close()

        if applied:
            logger.info("Lesson %s processed successfully", lesson_id)
        else:
            logger.warning(
                "Lesson %s was claimed by a newer invocation; result discarded", lesson_id
            )
        return ProcessingResult(
            lesson_id=lesson_id,
            transcription_length=len(transcription),
            summary_length=len(summary),
            superseded=not applied,
        )

    async def _generate(self, lesson: Lesson) -> tuple[str, str]:
        if not lesson.audio_url:
            logger.info("No audio linked to lesson %s, writing placeholders", lesson.id)
            return NO_AUDIO_TRANSCRIPTION.format(title=lesson.title), NO_AUDIO_SUMMARY

        audio = await self.audio_store.download(lesson.audio_url)
        logger.info("Downloaded %s (%d bytes)", lesson.audio_url, len(audio))

        encoded = encode_base64_chunked(audio)
        text = await self.gemini.generate_from_audio(
            encoded,
            mime_type_for_key(lesson.audio_url),
            build_prompt(lesson),
            temperature=settings.ai_temperature,
            max_output_tokens=settings.ai_max_output_tokens,
        )
        if not text.strip():
            raise EmptyAIResponse("Empty response from the AI endpoint")

        transcription, summary = parse_ai_response(text)
        logger.info(
            "Lesson %s: transcription %d chars, summary %d chars",
            lesson.id, len(transcription), len(summary),
        )
        return transcription, summary

    @staticmethod
    async def _mark_error(lessons: LessonRepository, lesson_id: str, token: str) -> None:
        try:
            await lessons.fail(lesson_id, token)
        except Exception:
            logger.exception("Could not update status of lesson %s", lesson_id)
