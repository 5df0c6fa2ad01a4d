import os
import re
import logging
from typing import List, Optional

from google import genai
from google.genai import types
from dotenv import load_dotenv

from images import bytes_to_data_url, split_data_url
from models import AuditReport, AuditStatus, Citation
from prompt import IMAGE_EDIT_PROMPT, SYSTEM_PROMPT, WEB_SEARCH_ADDENDUM

load_dotenv()

logger = logging.getLogger(__name__)

AUDIT_MODEL = os.getenv("AUDIT_MODEL", "gemini-3-pro-preview")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gemini-2.5-flash-image")
AUDIT_TEMPERATURE = float(os.getenv("AUDIT_TEMPERATURE", "0.1"))

STATUS_LINE = re.compile(
    r"^[\s*#>_`]*STATUS[\s*_]*:[\s*_]*(COMPLIANT|VIOLATION|UNCERTAIN)\b[\s*_]*$",
    re.IGNORECASE | re.MULTILINE,
)


class AuditValidationError(ValueError):
    pass


class ExternalServiceError(RuntimeError):
    pass


#the helper functions

def validate_audit_inputs(regulation: str, scenario: str) -> None:
    if not (regulation or "").strip() or not (scenario or "").strip():
        raise AuditValidationError(
            "Not enough to audit against: provide both the regulation text and the case scenario."
        )


def build_audit_prompt(enable_web_search: bool = False) -> str:
    """
    Appends the web search instructions to the base audit prompt when
    grounding is requested.
    """
    if enable_web_search:
        return SYSTEM_PROMPT + WEB_SEARCH_ADDENDUM
    return SYSTEM_PROMPT


def build_audit_contents(regulation: str, scenario: str, enable_web_search: bool = False) -> List[str]:
    return [
        build_audit_prompt(enable_web_search),
        "### REFERENCE REGULATIONS\n" + regulation.strip(),
        "### CASE SCENARIO\n" + scenario.strip(),
    ]


def parse_audit_output(response_text: str) -> tuple:
    "splits the status line from the narrative"
    clean = response_text.replace("```markdown", "").replace("```", "").strip()

    match = STATUS_LINE.search(clean)
    if not match:
        return AuditStatus.UNCERTAIN, clean

    status = AuditStatus(match.group(1).upper())
    narrative = (clean[:match.start()] + clean[match.end():]).strip()
    return status, narrative


def extract_citations(response) -> List[Citation]:
    """Collects web sources from Gemini grounding metadata, first occurrence wins."""
    citations = []
    seen = set()

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return citations

    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        if not uri or uri in seen:
            continue
        seen.add(uri)
        citations.append(Citation(url=uri, title=getattr(web, "title", None) or uri))
    return citations


def get_client() -> genai.Client:
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ExternalServiceError("API key missing")
    return genai.Client(api_key=api_key)


def run_llm_audit(
        regulation: str,
        scenario: str,
        enable_web_search: bool = False,
        client: Optional[genai.Client] = None,
) -> AuditReport:

    #Validate inputs before any network call
    validate_audit_inputs(regulation, scenario)

    client = client or get_client()

    config_kwargs = {"temperature": AUDIT_TEMPERATURE}
    if enable_web_search:
        config_kwargs["tools"] = [types.Tool(google_search=types.GoogleSearch())]

    logger.info("audit request: model=%s web_search=%s", AUDIT_MODEL, enable_web_search)
    response = client.models.generate_content(
        model=AUDIT_MODEL,
        contents=build_audit_contents(regulation, scenario, enable_web_search),
        config=types.GenerateContentConfig(**config_kwargs),
    )

    if not response.text:
        raise ExternalServiceError("The audit model returned an empty response")

    status, narrative = parse_audit_output(response.text)
    citations = extract_citations(response) if enable_web_search else []
    return AuditReport(status=status, narrative=narrative, citations=tuple(citations))


#image editing

def edit_evidence_image(
        image: str,
        instruction: str,
        client: Optional[genai.Client] = None,
) -> str:
    """
    Sends the current evidence image and an edit instruction to the image
    model and returns the edited image as a data URL.
    """
    if not image:
        raise ValueError("No evidence image to edit")
    if not (instruction or "").strip():
        raise ValueError("Image edit instruction is empty")

    mime_type, raw = split_data_url(image)
    client = client or get_client()

    response = client.models.generate_content(
        model=IMAGE_MODEL,
        contents=[
            types.Part.from_bytes(data=raw, mime_type=mime_type),
            IMAGE_EDIT_PROMPT + instruction.strip(),
        ],
        config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
    )

    candidates = response.candidates or []
    parts = (candidates[0].content.parts if candidates and candidates[0].content else None) or []
    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return bytes_to_data_url(inline.data, inline.mime_type or "image/png")

    raise ExternalServiceError("The image model did not return an image")
