import threading

import pytest

from reporting.core.errors import ConcurrencyConflictError, InvalidTransitionError
from reporting.db.models.audit_log import AuditAction, AuditLog
from reporting.db.models.report import Report, ReportStatus
from reporting.db.models.report_signature import ReportSignature
from reporting.services.store import ReportStore
from conftest import rows


def test_stale_write_is_a_conflict(session_factory, users, in_manager_review):
    rid = in_manager_review["id"]
    first, second = session_factory(), session_factory()
    try:
        a = first.get(Report, rid)
        b = second.get(Report, rid)
        assert a.version == b.version

        a.status = ReportStatus.MANAGER_APPROVED
        ReportStore(first).save_transactional(
            a, AuditLog(action=AuditAction.APPROVED, user_id=users["m1"], report_id=rid)
        )

        b.status = ReportStatus.MANAGER_REJECTED
        with pytest.raises(ConcurrencyConflictError):
            ReportStore(second).save_transactional(
                b, AuditLog(action=AuditAction.REJECTED, user_id=users["m3"], report_id=rid)
            )
    finally:
        first.close()
        second.close()

    assert rows(session_factory, Report, id=rid)[0].status == ReportStatus.MANAGER_APPROVED
    assert rows(session_factory, AuditLog, report_id=rid, action=AuditAction.REJECTED) == []


RACES = [
    pytest.param(("approve", "m1"), ("approve", "m3"), id="two-managers-approve"),
    pytest.param(("approve", "m1"), ("approve", "m1"), id="same-manager-approves-twice"),
    pytest.param(("approve", "m1"), ("reject", "m3"), id="approve-against-reject"),
]


@pytest.mark.parametrize("first, second", RACES)
def test_racing_managers_only_one_wins(monkeypatch, engine, session_factory, users, in_manager_review, first, second):
    rid = in_manager_review["id"]
    barrier = threading.Barrier(2, timeout=10)
    original = ReportStore.save_transactional

    def gated(self, report, audit, **kwargs):
        # both writers have passed their checks before either commits
        barrier.wait()
        return original(self, report, audit, **kwargs)

    monkeypatch.setattr(ReportStore, "save_transactional", gated)

    def call(action, who):
        if action == "approve":
            return lambda: engine.approve(rid, users[who], "ok")
        return lambda: engine.reject(rid, users[who], "not ok")

    results = {}

    def act(key, fn):
        try:
            results[key] = fn()
        except Exception as exc:
            results[key] = exc

    threads = [
        threading.Thread(target=act, args=("a", call(*first))),
        threading.Thread(target=act, args=("b", call(*second))),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert set(results) == {"a", "b"}
    winners = [v for v in results.values() if isinstance(v, dict)]
    losers = [v for v in results.values() if isinstance(v, ConcurrencyConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1

    final = engine.get_report(rid, users["m1"])
    assert final["status"] == winners[0]["status"]
    trail = engine.audit_trail(rid, users["m1"])
    assert len([e for e in trail if e["action"] in ("approved", "rejected")]) == 1
    if first[0] == second[0] == "approve":
        assert final["status"] == "gm_review"
    expected = 1 if final["status"] == "gm_review" else 0
    assert len(rows(session_factory, ReportSignature, report_id=rid)) == expected


def test_retry_after_losing_sees_the_new_status(engine, session_factory, users, in_manager_review):
    rid = in_manager_review["id"]
    engine.approve(rid, users["m1"])
    with pytest.raises(InvalidTransitionError):
        engine.approve(rid, users["m3"])
    with pytest.raises(InvalidTransitionError):
        engine.reject(rid, users["m3"], "too late")
    assert len(rows(session_factory, ReportSignature, report_id=rid)) == 1
