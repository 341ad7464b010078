import io
import os
from datetime import datetime

import pytest

from reporting.core.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    EditNotAllowedError,
    NotFoundError,
    ValidationError,
)
from reporting.db.models.report_attachment import ReportAttachment
from reporting.services.attachments import AttachmentStore
from reporting.services.engine import ReportWorkflowEngine
from reporting.services.store import ReportStore
from conftest import rows


@pytest.fixture
def files_root(tmp_path):
    return str(tmp_path / "files")


@pytest.fixture
def engine(session_factory, settings, dispatcher, files_root):
    return ReportWorkflowEngine(
        session_factory, settings, dispatcher=dispatcher, attachments=AttachmentStore(files_root, max_bytes=64)
    )


def stored_files(root):
    out = []
    for _, _, names in os.walk(root):
        out.extend(names)
    return out


def test_creator_uploads_while_drafting(engine, users, draft, files_root):
    a = engine.upload_attachment(draft["id"], users["u1"], "plan.pdf", b"%PDF-1.4 plan", content_type="application/pdf")
    assert a["approval_stage"] == "initial"
    assert a["size"] == len(b"%PDF-1.4 plan")
    assert a["uploaded_by"] == users["u1"]
    assert stored_files(files_root)[0].endswith(".pdf")

    detail = engine.get_report(draft["id"], users["u1"])
    assert [x["file_name"] for x in detail["attachments"]] == ["plan.pdf"]
    assert engine.audit_trail(draft["id"], users["u1"])[-1]["action"] == "uploaded"


def test_upload_from_a_stream(engine, users, draft):
    a = engine.upload_attachment(draft["id"], users["u1"], "../../notes.txt", io.BytesIO(b"meeting notes"))
    assert a["file_name"] == "notes.txt"
    assert a["size"] == 13


def test_upload_follows_the_stage_holder(engine, users, in_manager_review):
    rid = in_manager_review["id"]
    with pytest.raises(AuthorizationError):
        engine.upload_attachment(rid, users["u1"], "late.txt", b"late")
    with pytest.raises(AuthorizationError):
        engine.upload_attachment(rid, users["m2"], "other.txt", b"other")
    a = engine.upload_attachment(rid, users["m1"], "review.txt", b"review notes")
    assert a["approval_stage"] == "manager_review"

    engine.approve(rid, users["m1"])
    a = engine.upload_attachment(rid, users["g1"], "gm.txt", b"gm notes")
    assert a["approval_stage"] == "gm_review"


def test_no_uploads_once_finished(engine, users, in_gm_review):
    rid = in_gm_review["id"]
    engine.approve(rid, users["g1"])
    with pytest.raises(EditNotAllowedError):
        engine.upload_attachment(rid, users["g1"], "after.txt", b"too late")


@pytest.mark.parametrize("data", [b"", b"x" * 65, io.BytesIO(b"y" * 100)])
def test_upload_size_limits(engine, users, draft, files_root, session_factory, data):
    with pytest.raises(ValidationError):
        engine.upload_attachment(draft["id"], users["u1"], "big.bin", data)
    assert stored_files(files_root) == []
    assert rows(session_factory, ReportAttachment, report_id=draft["id"]) == []


def test_upload_needs_a_file_name(engine, users, draft):
    with pytest.raises(ValidationError):
        engine.upload_attachment(draft["id"], users["u1"], "  ", b"data")


def test_failed_commit_removes_the_file(monkeypatch, engine, users, draft, files_root, session_factory):
    def conflict(self, report, audit, **kwargs):
        raise ConcurrencyConflictError("lost", report_id=report.id)

    monkeypatch.setattr(ReportStore, "save_transactional", conflict)
    with pytest.raises(ConcurrencyConflictError):
        engine.upload_attachment(draft["id"], users["u1"], "plan.pdf", b"plan")
    assert stored_files(files_root) == []
    assert rows(session_factory, ReportAttachment, report_id=draft["id"]) == []


def test_download_is_audited(engine, users, draft):
    a = engine.upload_attachment(draft["id"], users["u1"], "plan.txt", b"the plan")
    engine.submit(draft["id"], users["u1"])

    view, data = engine.download_attachment(draft["id"], a["id"], users["m1"])
    assert data == b"the plan"
    assert view["file_name"] == "plan.txt"
    last = engine.audit_trail(draft["id"], users["m1"])[-1]
    assert last["action"] == "downloaded"
    assert last["user_id"] == users["m1"]

    with pytest.raises(AuthorizationError):
        engine.download_attachment(draft["id"], a["id"], users["m2"])


def test_remove_in_same_stage(engine, users, draft, session_factory):
    a = engine.upload_attachment(draft["id"], users["u1"], "plan.txt", b"the plan")
    out = engine.remove_attachment(draft["id"], a["id"], users["u1"])
    assert out["is_active"] is False

    assert engine.get_report(draft["id"], users["u1"])["attachments"] == []
    assert len(rows(session_factory, ReportAttachment, report_id=draft["id"])) == 1
    assert engine.audit_trail(draft["id"], users["u1"])[-1]["action"] == "deleted"
    with pytest.raises(NotFoundError):
        engine.download_attachment(draft["id"], a["id"], users["u1"])


def test_remove_is_limited_to_uploader_and_stage(engine, users, draft):
    a = engine.upload_attachment(draft["id"], users["u1"], "plan.txt", b"the plan")
    engine.submit(draft["id"], users["u1"])
    with pytest.raises(AuthorizationError):
        engine.remove_attachment(draft["id"], a["id"], users["m1"])
    with pytest.raises(EditNotAllowedError):
        engine.remove_attachment(draft["id"], a["id"], users["u1"])
    assert len(engine.get_report(draft["id"], users["u1"])["attachments"]) == 1


def test_store_reports_missing_files(tmp_path):
    store = AttachmentStore(str(tmp_path), max_bytes=1024)
    with pytest.raises(NotFoundError):
        store.read("r1", "gone.txt")
    store.delete("r1", "gone.txt")


def test_audit_trail_stays_ordered_when_clock_jumps_during_download(session_factory, settings, users, files_root):
    stamps = iter(
        [
            datetime(2026, 4, 1, 10, 0),  # create
            datetime(2026, 4, 1, 10, 1),  # upload
            datetime(2026, 4, 1, 10, 2),  # submit
            datetime(2026, 4, 1, 12, 0),  # download, clock ran ahead
            datetime(2026, 4, 1, 10, 3),  # approve, clock corrected
        ]
    )
    engine = ReportWorkflowEngine(
        session_factory, settings, attachments=AttachmentStore(files_root, max_bytes=64), clock=lambda: next(stamps)
    )
    report = engine.create_report(users["u1"], title="t", content="c")
    a = engine.upload_attachment(report["id"], users["u1"], "plan.txt", b"plan")
    engine.submit(report["id"], users["u1"])
    engine.download_attachment(report["id"], a["id"], users["m1"])
    engine.approve(report["id"], users["m1"])

    trail = engine.audit_trail(report["id"], users["u1"])
    assert [e["action"] for e in trail] == ["created", "uploaded", "submitted", "downloaded", "approved"]
    times = [e["timestamp"] for e in trail]
    assert times == sorted(times)
    assert times[-1] == times[-2]
