import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from extractor import ExtractionError, classify, extract_text
from images import to_data_url
from models import FileKind, UploadedFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    text: str
    image: Optional[str] = None


@dataclass(frozen=True)
class _FileOutcome:
    text: str = ""
    image: Optional[str] = None


def wrap_document(filename: str, text: str) -> str:
    return f"\n[FILE START: {filename}]\n{text}\n[FILE END: {filename}]\n"


async def _process_file(file: UploadedFile) -> _FileOutcome:
    if classify(file.filename) is FileKind.IMAGE:
        image = await asyncio.to_thread(to_data_url, file)
        return _FileOutcome(image=image)

    text = await asyncio.to_thread(extract_text, file)
    return _FileOutcome(text=wrap_document(file.filename, text))


async def process_batch(files: Sequence[UploadedFile]) -> BatchResult:
    """
    Processes one upload batch, one file at a time in input order. Each
    read or parse runs off the event loop. Document text is concatenated
    in input order and the last image wins. The first failing file aborts
    the batch with an ExtractionError: later files are never read and
    nothing is returned.
    """
    new_text = ""
    last_image = None
    for file in files:
        try:
            outcome = await _process_file(file)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(file.filename, e) from e
        new_text += outcome.text
        if outcome.image is not None:
            last_image = outcome.image

    logger.info("batch of %d file(s) extracted, %d chars", len(files), len(new_text))
    return BatchResult(text=new_text, image=last_image)
