"""
Unit tests for session state and the audit controller.

Tests:
- Reducer transitions and busy guards
- Atomic batch commit into the regulation corpus
- Audit validation, success and failure
- Image edit and clear
"""

import asyncio

import pytest

from conftest import PNG_BYTES, build_workbook


def run(coro):
    return asyncio.run(coro)


class TestReducer:

    def test_render_states_are_exclusive(self, sample_report):
        from session import SessionState, render_state

        assert render_state(SessionState()) == "idle"
        assert render_state(SessionState(report=sample_report)) == "has-result"
        assert render_state(SessionState(report=sample_report, is_auditing=True)) == "loading"

    def test_second_batch_while_parsing_is_rejected(self):
        from session import BatchStarted, SessionBusyError, SessionState, reduce

        with pytest.raises(SessionBusyError):
            reduce(SessionState(is_parsing=True), BatchStarted())

    def test_audit_while_parsing_is_rejected(self):
        from session import AuditStarted, SessionBusyError, SessionState, reduce

        with pytest.raises(SessionBusyError):
            reduce(SessionState(is_parsing=True), AuditStarted())

    def test_audit_while_auditing_is_rejected(self):
        from session import AuditStarted, SessionBusyError, SessionState, reduce

        with pytest.raises(SessionBusyError):
            reduce(SessionState(is_auditing=True), AuditStarted())

    def test_commit_appends_and_keeps_image_without_new_one(self):
        from session import BatchCommitted, SessionState, reduce

        state = SessionState(regulation="old", evidence_image="data:image/png;base64,AA==", is_parsing=True)

        new_state = reduce(state, BatchCommitted("+new"))

        assert new_state.regulation == "old+new"
        assert new_state.evidence_image == "data:image/png;base64,AA=="
        assert new_state.is_parsing is False

    def test_success_replaces_report_wholesale(self, sample_report):
        from models import AuditReport, AuditStatus
        from session import AuditSucceeded, SessionState, reduce

        newer = AuditReport(status=AuditStatus.COMPLIANT, narrative="ok")
        state = SessionState(report=sample_report, is_auditing=True)

        new_state = reduce(state, AuditSucceeded(newer))

        assert new_state.report is newer
        assert new_state.report.citations == ()

    def test_unknown_event(self):
        from session import SessionState, reduce

        with pytest.raises(TypeError):
            reduce(SessionState(), object())


class TestUpload:

    def test_documents_and_image_committed(self, audit_session):
        from models import UploadedFile

        audit_session.edit_regulation("Pasted clause.")
        state = run(audit_session.upload([
            UploadedFile("rules.txt", b"Article 1"),
            UploadedFile("scene.png", PNG_BYTES),
        ]))

        assert state.regulation.startswith("Pasted clause.\n[FILE START: rules.txt]\n")
        assert state.regulation.endswith("[FILE END: rules.txt]\n")
        assert state.evidence_image.startswith("data:image/png;base64,")
        assert state.is_parsing is False
        assert state.error is None

    def test_failed_batch_leaves_corpus_and_image(self, audit_session):
        from extractor import ExtractionError
        from models import UploadedFile

        run(audit_session.upload([UploadedFile("base.txt", b"kept"), UploadedFile("a.png", PNG_BYTES)]))
        before = audit_session.state

        with pytest.raises(ExtractionError):
            run(audit_session.upload([
                UploadedFile("good.txt", b"would be appended"),
                UploadedFile("new.png", b"other image"),
                UploadedFile("bad.docx", b"corrupt"),
            ]))

        after = audit_session.state
        assert after.regulation == before.regulation
        assert after.evidence_image == before.evidence_image
        assert after.is_parsing is False
        assert "bad.docx" in after.error

    def test_same_spreadsheet_twice_appends_twice(self, audit_session):
        from models import UploadedFile

        workbook = UploadedFile("fees.xlsx", build_workbook({"Fees": [["late", "30"]]}))

        run(audit_session.upload([workbook]))
        state = run(audit_session.upload([workbook]))

        assert state.regulation.count("[FILE START: fees.xlsx]") == 2
        assert state.regulation.count("--- Sheet: Fees (CSV Format) ---\nlate,30") == 2


class TestAudit:

    def test_empty_regulation_is_rejected_without_call(self, audit_session, mock_auditor):
        from auditengine import AuditValidationError

        audit_session.edit_scenario("valid text")

        with pytest.raises(AuditValidationError):
            audit_session.run_audit()

        mock_auditor.assert_not_called()
        assert audit_session.state.error
        assert audit_session.state.is_auditing is False

    def test_empty_scenario_is_rejected_without_call(self, audit_session, mock_auditor):
        from auditengine import AuditValidationError

        audit_session.edit_regulation("valid text")

        with pytest.raises(AuditValidationError):
            audit_session.run_audit()

        mock_auditor.assert_not_called()

    def test_success_sets_report_and_loading_toggles_once(self, audit_session, mock_auditor, sample_report):
        audit_session.edit_regulation("Article 3")
        audit_session.edit_scenario("We did X")
        audit_session.set_search(True)

        loading_flags = []
        original_dispatch = audit_session.dispatch

        def recording_dispatch(event):
            state = original_dispatch(event)
            loading_flags.append(state.is_auditing)
            return state

        audit_session.dispatch = recording_dispatch

        state = audit_session.run_audit()

        mock_auditor.assert_called_once_with("Article 3", "We did X", True)
        assert state.report is sample_report
        assert loading_flags == [True, False]

    def test_failure_keeps_previous_report(self, audit_session, mock_auditor, sample_report):
        audit_session.edit_regulation("Article 3")
        audit_session.edit_scenario("We did X")
        audit_session.run_audit()

        mock_auditor.side_effect = RuntimeError("quota exceeded")
        state = audit_session.run_audit()

        assert state.report is sample_report
        assert state.error == "quota exceeded"
        assert state.is_auditing is False


class TestImageEdit:

    def test_edit_replaces_image(self, audit_session, mock_image_editor):
        from models import UploadedFile

        run(audit_session.upload([UploadedFile("a.png", PNG_BYTES)]))
        original = audit_session.state.evidence_image

        state = audit_session.edit_image("circle the sign")

        mock_image_editor.assert_called_once_with(original, "circle the sign")
        assert state.evidence_image == "data:image/png;base64,ZWRpdGVk"

    def test_edit_failure_is_standalone(self, audit_session, mock_image_editor):
        from models import UploadedFile

        run(audit_session.upload([UploadedFile("rules.txt", b"A"), UploadedFile("a.png", PNG_BYTES)]))
        before = audit_session.state
        mock_image_editor.side_effect = RuntimeError("model refused")

        state = audit_session.edit_image("crop")

        assert state.evidence_image == before.evidence_image
        assert state.regulation == before.regulation
        assert state.error is None
        assert "model refused" in state.image_error

    def test_edit_without_image(self, audit_session, mock_image_editor):
        with pytest.raises(ValueError):
            audit_session.edit_image("crop")

        mock_image_editor.assert_not_called()

    def test_clear_image(self, audit_session):
        from models import UploadedFile

        run(audit_session.upload([UploadedFile("a.png", PNG_BYTES)]))

        assert audit_session.clear_image().evidence_image is None
