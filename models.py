from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class AuditStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    VIOLATION = "VIOLATION"
    UNCERTAIN = "UNCERTAIN"


STATUS_LABELS = {
    AuditStatus.COMPLIANT: "적합 (Compliant)",
    AuditStatus.VIOLATION: "위반 (Violation)",
    AuditStatus.UNCERTAIN: "판단 불가 / 주의 (Uncertain)",
}


class FileKind(Enum):
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"
    WORD = "word"
    IMAGE = "image"
    PLAIN_TEXT = "plain-text"


@dataclass(frozen=True)
class Citation:
    url: str
    title: str


@dataclass(frozen=True)
class AuditReport:
    status: AuditStatus
    narrative: str
    citations: Tuple[Citation, ...] = ()

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "label": STATUS_LABELS[self.status],
            "narrative": self.narrative,
            "citations": [{"url": c.url, "title": c.title} for c in self.citations],
        }


def file_extension(filename: str) -> str:
    """Lower-cased text after the last dot, or "" when there is none."""
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


@dataclass(frozen=True)
class UploadedFile:
    """A named blob read from an upload. Its kind is inferred from the name."""

    filename: str
    data: bytes = field(repr=False)

    @property
    def extension(self) -> str:
        return file_extension(self.filename)
