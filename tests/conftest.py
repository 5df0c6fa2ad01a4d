"""
Pytest fixtures for the compliance audit service.

Provides:
- Builders for in-memory PDF, workbook and Word documents
- A fresh AuditSession with mocked Gemini collaborators
- Flask test client bound to that session
"""

import io
import os
import sys
import pytest
from unittest.mock import Mock

# Keep the real key out of tests
os.environ.pop("GEMINI_API_KEY", None)

# Add the project root to the Python path
root_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if root_dir not in sys.path:
    sys.path.insert(0, root_dir)


# ============================================================================
# Document builders
# ============================================================================

def build_pdf(pages):
    """pages: list of [(x, y, text), ...] in top-down page coordinates."""
    import fitz

    doc = fitz.open()
    for fragments in pages:
        page = doc.new_page()
        for x, y, text in fragments:
            page.insert_text((x, y), text)
    data = doc.tobytes()
    doc.close()
    return data


def build_workbook(sheets):
    """sheets: dict of sheet name -> list of rows."""
    import pandas as pd

    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False, header=False)
    return buf.getvalue()


def build_docx(paragraphs):
    from docx import Document

    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


# ============================================================================
# Session and app fixtures
# ============================================================================

@pytest.fixture
def sample_report():
    from models import AuditReport, AuditStatus, Citation

    return AuditReport(
        status=AuditStatus.VIOLATION,
        narrative="## Summary\nThe scenario breaches Article 3.",
        citations=(Citation(url="https://law.example.gov/a3", title="Article 3"),),
    )


@pytest.fixture
def mock_auditor(sample_report):
    return Mock(return_value=sample_report)


@pytest.fixture
def mock_image_editor():
    return Mock(return_value="data:image/png;base64,ZWRpdGVk")


@pytest.fixture
def audit_session(mock_auditor, mock_image_editor):
    from session import AuditSession

    return AuditSession(auditor=mock_auditor, image_editor=mock_image_editor)


@pytest.fixture
def app(audit_session, monkeypatch):
    import app as app_module

    monkeypatch.setattr(app_module, "audit_session", audit_session)
    app_module.app.config.update({"TESTING": True})
    return app_module.app


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()
