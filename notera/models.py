from dataclasses import asdict, dataclass
from enum import Enum


class LessonStatus(str, Enum):
    RECORDING = "recording"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


# Transitions the store accepts. READY is terminal.
ALLOWED_TRANSITIONS: dict[LessonStatus, frozenset[LessonStatus]] = {
    LessonStatus.RECORDING: frozenset({LessonStatus.PROCESSING, LessonStatus.READY}),
    LessonStatus.PROCESSING: frozenset(
        {LessonStatus.PROCESSING, LessonStatus.READY, LessonStatus.ERROR}
    ),
    LessonStatus.ERROR: frozenset({LessonStatus.PROCESSING}),
    LessonStatus.READY: frozenset(),
}


def can_transition(current: LessonStatus | str, target: LessonStatus | str) -> bool:
    return LessonStatus(target) in ALLOWED_TRANSITIONS[LessonStatus(current)]


@dataclass
class Organization:
    id: str
    name: str
    created_at: str


@dataclass
class Classroom:
    id: str
    organization_id: str
    teacher_id: str
    name: str
    join_code: str  # canonical upper-case form
    created_at: str


@dataclass
class Lesson:
    id: str
    class_id: str
    title: str
    subject: str | None
    recorded_at: str
    duration_seconds: int
    audio_url: str | None  # storage key, not a URL
    transcription: str | None
    summary: str | None  # markdown
    status: LessonStatus
    updated_at: str
    class_name: str | None = None

    @classmethod
    def from_row(cls, row) -> "Lesson":
        data = dict(row)
        return cls(
            id=data["id"],
            class_id=data["class_id"],
            title=data["title"],
            subject=data["subject"],
            recorded_at=data["recorded_at"],
            duration_seconds=data["duration_seconds"],
            audio_url=data["audio_url"],
            transcription=data["transcription"],
            summary=data["summary"],
            status=LessonStatus(data["status"]),
            updated_at=data["updated_at"],
            class_name=data.get("class_name"),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        if data["class_name"] is None:
            data.pop("class_name")
        return data
