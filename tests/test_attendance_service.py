"""
Attendance marking (upsert, enrollment checks, ownership) and the per-student views.
"""
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from app.api.v1.attendance import service
from app.api.v1.attendance.schemas import AttendanceMarkRequest
from app.api.v1.registrations import service as registration_service
from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.core.models import AttendanceRecord


async def _enroll(db, campus, names, subject=None):
    subject = subject or campus.data_structures
    for name in names:
        reg = await registration_service.request_registration(db, campus.students[name].id, subject.id)
        await registration_service.transition(db, reg.id, "approved")


def _request(subject, on_date, marks):
    return AttendanceMarkRequest(
        subject_id=subject.id,
        date=on_date,
        records=[{"student_id": student.id, "status": status} for student, status in marks],
    )


async def _mark(db, campus, on_date, marks, subject=None, marker=None):
    subject = subject or campus.data_structures
    marker = marker or campus.faculty
    return await service.mark_attendance(db, marker.id, marker.role, _request(subject, on_date, marks))


@pytest.mark.asyncio
async def test_mark_creates_then_updates_same_day(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam", "Ravi"])
    sam, ravi = campus.students["Sam"], campus.students["Ravi"]
    day = date.today() - timedelta(days=1)

    first = await _mark(db_session, campus, day, [(sam, "present"), (ravi, "absent")])
    assert (first.created, first.updated) == (2, 0)

    second = await _mark(db_session, campus, day, [(ravi, "late")])
    assert (second.created, second.updated) == (0, 1)
    assert second.records[0].status.value == "late"

    rows = (await db_session.execute(
        select(AttendanceRecord.student_id, AttendanceRecord.status).where(AttendanceRecord.date == day)
    )).all()
    assert dict(rows) == {sam.id: "present", ravi.id: "late"}


@pytest.mark.asyncio
async def test_mark_rejects_students_not_enrolled(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam"])
    sam, mina = campus.students["Sam"], campus.students["Mina"]
    with pytest.raises(ValidationError):
        await _mark(db_session, campus, date.today(), [(sam, "present"), (mina, "present")])
    # All or nothing
    assert await db_session.scalar(select(func.count()).select_from(AttendanceRecord)) == 0


@pytest.mark.asyncio
async def test_mark_rejects_future_dates(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam"])
    with pytest.raises(ValidationError):
        await _mark(db_session, campus, date.today() + timedelta(days=1), [(campus.students["Sam"], "present")])


@pytest.mark.asyncio
async def test_mark_rejects_repeated_student(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam"])
    sam = campus.students["Sam"]
    with pytest.raises(ValidationError):
        await _mark(db_session, campus, date.today(), [(sam, "present"), (sam, "absent")])


@pytest.mark.asyncio
async def test_faculty_cannot_mark_another_faculty_subject(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam"])
    with pytest.raises(PermissionDeniedError):
        await _mark(
            db_session, campus, date.today(), [(campus.students["Sam"], "present")],
            marker=campus.other_faculty,
        )


@pytest.mark.asyncio
async def test_roster_lists_enrolled_students_with_saved_status(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam", "Ravi"])
    day = date.today() - timedelta(days=2)
    await _mark(db_session, campus, day, [(campus.students["Sam"], "absent")])

    roster = await service.get_session_roster(
        db_session, campus.faculty.id, "faculty", campus.data_structures.id, day,
    )
    assert [(r.student_name, r.status.value) for r in roster.rows] == [
        ("Ravi Student", "present"),
        ("Sam Student", "absent"),
    ]
    assert roster.summary.percentage == 50


@pytest.mark.asyncio
async def test_student_summary(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam"])
    await _enroll(db_session, campus, ["Sam"], subject=campus.algorithms)
    sam = campus.students["Sam"]
    today = date.today()
    await _mark(db_session, campus, today - timedelta(days=1), [(sam, "present")])
    await _mark(db_session, campus, today, [(sam, "late")])
    await _mark(
        db_session, campus, today, [(sam, "absent")],
        subject=campus.algorithms, marker=campus.other_faculty,
    )

    summary = await service.get_student_summary(db_session, sam.id, "student", sam.id, today=today)
    assert (summary.overall.present_count, summary.overall.total) == (1, 3)
    assert summary.overall.at_risk is True
    # (1 + n) / (3 + n) >= 0.75 first holds at n = 5
    assert summary.sessions_needed == 5
    assert [s.subject for s in summary.subjects] == ["Algorithms", "Data Structures"]
    assert len(summary.last_7_days) == 7
    assert summary.last_7_days[-1].start == today
    assert summary.last_7_days[-1].stat.total == 2
    assert len(summary.monthly) == 6


@pytest.mark.asyncio
async def test_view_permissions(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam"])
    sam, ravi = campus.students["Sam"], campus.students["Ravi"]

    with pytest.raises(PermissionDeniedError):
        await service.get_student_summary(db_session, ravi.id, "student", sam.id)
    # Sam is only enrolled in the subject Farhan teaches
    with pytest.raises(PermissionDeniedError):
        await service.get_student_summary(db_session, campus.other_faculty.id, "faculty", sam.id)
    await service.get_student_summary(db_session, campus.faculty.id, "faculty", sam.id)
    await service.get_student_summary(db_session, campus.admin.id, "admin", sam.id)
    with pytest.raises(NotFoundError):
        await service.get_student_summary(db_session, campus.admin.id, "admin", campus.faculty.id)


@pytest.mark.asyncio
async def test_period_stats_for_subject(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam", "Ravi"])
    sam, ravi = campus.students["Sam"], campus.students["Ravi"]
    today = date.today()
    await _mark(db_session, campus, today - timedelta(days=5), [(sam, "absent"), (ravi, "absent")])
    await _mark(db_session, campus, today - timedelta(days=2), [(sam, "present"), (ravi, "late")])
    await _mark(db_session, campus, today - timedelta(days=1), [(sam, "present"), (ravi, "present")])

    result = await service.get_period_stats(
        db_session, campus.faculty.id, "faculty",
        today - timedelta(days=2), today - timedelta(days=1),
        subject_id=campus.data_structures.id,
    )
    assert result.subject == "Data Structures"
    assert (result.stat.present_count, result.stat.late_count, result.stat.total) == (3, 1, 4)
    assert result.stat.percentage == 75
    assert result.stat.at_risk is False

    with pytest.raises(ValidationError):
        await service.get_period_stats(db_session, campus.admin.id, "admin", today, today)
    with pytest.raises(ValidationError):
        await service.get_period_stats(
            db_session, campus.admin.id, "admin", today, today - timedelta(days=1), student_id=sam.id,
        )


@pytest.mark.asyncio
async def test_subject_overview_lists_at_risk_students(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam", "Ravi", "Mina"])
    sam, ravi, mina = (campus.students[n] for n in ("Sam", "Ravi", "Mina"))
    day = date.today() - timedelta(days=1)
    await _mark(db_session, campus, day, [(sam, "present"), (ravi, "absent"), (mina, "late")])

    overview = await service.get_subject_overview(db_session, campus.faculty.id, "faculty", campus.data_structures.id)
    assert [s.student_name for s in overview.students] == ["Mina Student", "Ravi Student", "Sam Student"]
    assert set(overview.at_risk_student_ids) == {ravi.id, mina.id}

    with pytest.raises(PermissionDeniedError):
        await service.get_subject_overview(
            db_session, campus.other_faculty.id, "faculty", campus.data_structures.id,
        )


@pytest.mark.asyncio
async def test_list_attendance_scoped_by_role(db_session, campus) -> None:
    await _enroll(db_session, campus, ["Sam", "Ravi"])
    await _enroll(db_session, campus, ["Sam"], subject=campus.algorithms)
    sam, ravi = campus.students["Sam"], campus.students["Ravi"]
    day = date.today() - timedelta(days=1)
    await _mark(db_session, campus, day, [(sam, "present"), (ravi, "absent")])
    await _mark(db_session, campus, day, [(sam, "late")], subject=campus.algorithms, marker=campus.other_faculty)

    own = await service.list_attendance(db_session, sam.id, "student")
    assert {r.subject for r in own} == {"Data Structures", "Algorithms"}
    assert all(r.student_id == sam.id for r in own)

    taught = await service.list_attendance(db_session, campus.other_faculty.id, "faculty")
    assert [(r.student_id, r.subject) for r in taught] == [(sam.id, "Algorithms")]

    everything = await service.list_attendance(db_session, campus.admin.id, "admin")
    assert len(everything) == 3
