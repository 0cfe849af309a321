import calendar
import logging
from collections import Counter
from datetime import date, datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import aggregation
from .models import (
    DEFAULT_FEATURE_TOGGLES,
    Attendance,
    Center,
    Chapter,
    FeatureToggle,
    PaymentStatus,
    Student,
    StudentChapter,
    StudentFee,
    Test,
    TestResult,
    User,
)
from .policy import TenantScope


logger = logging.getLogger(__name__)

CONTACT_DIGITS = 10
BULK_REQUIRED_FIELDS = (
    ("name", "Name is required"),
    ("grade", "Grade is required"),
    ("contact_number", "Contact number is required"),
    ("school_name", "School name is required"),
    ("parent_name", "Parent name is required"),
)
_NATIVE_UPSERT = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


def upsert(db: Session, model: Any, keys: dict[str, Any], values: dict[str, Any]) -> None:
    """Insert a row or update the one matching ``keys``, inside the caller's transaction."""
    insert_fn = _NATIVE_UPSERT.get(db.get_bind().dialect.name)
    if insert_fn is not None:
        stmt = insert_fn(model).values(**keys, **values)
        stmt = stmt.on_conflict_do_update(index_elements=list(keys), set_=values)
        db.execute(stmt)
        return

    row = db.query(model).filter_by(**keys).first()
    if row is None:
        db.add(model(**keys, **values))
        db.flush()
        return
    for name, value in values.items():
        setattr(row, name, value)
    db.flush()


def _commit(db: Session, failure_message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"{failure_message}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=failure_message) from exc


def month_bounds(month: str) -> tuple[date, date]:
    try:
        year, month_number = (int(part) for part in month.split("-"))
        last_day = calendar.monthrange(year, month_number)[1]
        return date(year, month_number, 1), date(year, month_number, last_day)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="month must be in YYYY-MM format") from exc


def require_center(db: Session, center_id: int) -> Center:
    center = db.get(Center, center_id)
    if not center:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Center not found")
    return center


# --- Feature toggles ---

def seed_feature_toggles(db: Session) -> None:
    existing = {name for (name,) in db.query(FeatureToggle.feature_name).all()}
    for feature_name, description in DEFAULT_FEATURE_TOGGLES.items():
        if feature_name in existing:
            continue
        db.add(FeatureToggle(feature_name=feature_name, enabled=True, description=description))
    db.commit()


def is_feature_enabled(db: Session, feature_name: str) -> bool:
    toggle = db.query(FeatureToggle).filter(FeatureToggle.feature_name == feature_name).first()
    return toggle is None or toggle.enabled


def list_feature_toggles(db: Session) -> list[FeatureToggle]:
    return db.query(FeatureToggle).order_by(FeatureToggle.feature_name).all()


def update_feature_toggle(db: Session, feature_name: str, enabled: bool) -> FeatureToggle:
    toggle = db.query(FeatureToggle).filter(FeatureToggle.feature_name == feature_name).first()
    if not toggle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feature not found")
    toggle.enabled = enabled
    _commit(db, "Failed to update feature toggle")
    db.refresh(toggle)
    logger.info(f"Feature '{feature_name}' set to {'enabled' if enabled else 'disabled'}")
    return toggle


# --- Students ---

def list_students(db: Session, scope: TenantScope, grade: str | None = None) -> list[Student]:
    query = scope.students(db)
    if grade:
        query = query.filter(Student.grade == grade)
    return query.order_by(Student.name, Student.id).all()


def create_student(db: Session, scope: TenantScope, fields: dict[str, Any], center_id: int | None = None) -> Student:
    target_center = scope.writable_center_id(center_id)
    require_center(db, target_center)
    student = Student(**fields, center_id=target_center)
    db.add(student)
    _commit(db, "Failed to create student")
    db.refresh(student)
    return student


def validate_student_rows(rows: list[dict[str, Any]]) -> dict[str, list]:
    """Split uploaded rows into valid, invalid and duplicate-name groups.

    Row numbers follow the uploaded sheet, where the header is row 1.
    """
    valid: list[dict[str, str]] = []
    invalid: list[dict[str, Any]] = []
    name_count: Counter = Counter()

    for index, raw in enumerate(rows):
        row = {field: str(raw.get(field) or "").strip() for field, _ in BULK_REQUIRED_FIELDS}
        errors = [message for field, message in BULK_REQUIRED_FIELDS if not row[field]]
        contact = row["contact_number"]
        if contact and not (len(contact) == CONTACT_DIGITS and contact.isdigit()):
            errors.append("Contact number must be 10 digits")

        if errors:
            invalid.append({"row": index + 2, "data": row, "error": ", ".join(errors)})
            continue
        valid.append(row)
        name_count[row["name"]] += 1

    duplicates = [{"name": name, "count": count} for name, count in name_count.items() if count > 1]
    return {"valid": valid, "invalid": invalid, "duplicates": duplicates}


def bulk_register_students(
    db: Session,
    scope: TenantScope,
    rows: list[dict[str, Any]],
    center_id: int | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    target_center = scope.writable_center_id(center_id)
    require_center(db, target_center)
    report = validate_student_rows(rows)

    created: list[Student] = []
    if report["valid"] and not dry_run:
        created = [Student(**row, center_id=target_center) for row in report["valid"]]
        db.add_all(created)
        _commit(db, "Failed to register students")
        for student in created:
            db.refresh(student)
        logger.info(f"Registered {len(created)} students for center {target_center}")

    return {
        "valid_count": len(report["valid"]),
        "invalid": report["invalid"],
        "duplicates": report["duplicates"],
        "created": created,
    }


def update_student(db: Session, scope: TenantScope, student_id: int, changes: dict[str, Any]) -> Student:
    scope.require_writer()
    student = scope.require_student(db, student_id)
    for name, value in changes.items():
        setattr(student, name, value)
    _commit(db, "Failed to update student")
    db.refresh(student)
    return student


def delete_student(db: Session, scope: TenantScope, student_id: int) -> None:
    scope.require_writer()
    student = scope.require_student(db, student_id)
    for model in (Attendance, StudentFee, TestResult, StudentChapter, User):
        db.query(model).filter(model.student_id == student.id).delete(synchronize_session=False)
    db.delete(student)
    _commit(db, "Failed to delete student")


# --- Attendance ---

def set_attendance_for_date(db: Session, scope: TenantScope, day: date, entries: list[Any]) -> dict[str, Any]:
    scope.require_writer()
    student_ids = [entry.student_id for entry in entries]
    if len(set(student_ids)) != len(student_ids):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Each student may appear only once")
    scope.require_students(db, student_ids)

    try:
        for entry in entries:
            upsert(
                db,
                Attendance,
                {"student_id": entry.student_id, "date": day},
                {"status": entry.status.value, "time_in": entry.time_in, "time_out": entry.time_out},
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to save attendance for {day}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save attendance") from exc

    return attendance_for_date(db, scope, day)


def attendance_for_date(db: Session, scope: TenantScope, day: date) -> dict[str, Any]:
    rows = (
        scope.scoped(db, Attendance)
        .join(Student, Student.id == Attendance.student_id)
        .filter(Attendance.date == day)
        .order_by(Student.name, Student.id)
        .all()
    )
    snapshot = aggregation.daily_snapshot(scope.students(db).count(), rows)
    return {
        "date": day,
        "records": [
            {
                "id": row.id,
                "student_id": row.student_id,
                "student_name": row.student.name,
                "grade": row.student.grade,
                "status": row.status,
                "time_in": row.time_in,
                "time_out": row.time_out,
            }
            for row in rows
        ],
        **snapshot.as_dict(),
    }


def attendance_dates(db: Session, scope: TenantScope) -> list[date]:
    rows = scope.scoped(db, Attendance).with_entities(Attendance.date).distinct().order_by(Attendance.date.desc()).all()
    return [row.date for row in rows]


def _attendance_rows(
    db: Session,
    scope: TenantScope,
    start: date | None = None,
    end: date | None = None,
    student_id: int | None = None,
) -> list[Attendance]:
    query = scope.scoped(db, Attendance)
    if start:
        query = query.filter(Attendance.date >= start)
    if end:
        query = query.filter(Attendance.date <= end)
    if student_id is not None:
        query = query.filter(Attendance.student_id == student_id)
    return query.order_by(Attendance.date, Attendance.id).all()


def attendance_summary(
    db: Session,
    scope: TenantScope,
    month: str | None = None,
    grade: str | None = None,
) -> dict[str, Any]:
    """Per-student stats plus the absentee ranking over every listed student,
    including those with no absences."""
    start, end = month_bounds(month) if month else (None, None)
    students = list_students(db, scope, grade=grade)
    records = _attendance_rows(db, scope, start, end)
    stats = aggregation.summarize_attendance(records, students)
    ranking = aggregation.rank_absentees(stats)
    listed = {student.id for student in students}
    return {
        "month": month,
        "grade": grade,
        "students": [entry.as_dict() for entry in stats],
        "absentees": [entry.as_dict() for entry in ranking],
        "overall_rate": aggregation.presence_rate(record for record in records if record.student_id in listed),
    }


# --- Fees ---

def _fee_dict(fee: StudentFee) -> dict[str, Any]:
    return {
        "id": fee.id,
        "student_id": fee.student_id,
        "student_name": fee.student.name,
        "center_id": fee.center_id,
        "month": fee.month,
        "amount": fee.amount,
        "due_date": fee.due_date,
        "payment_status": fee.payment_status,
        "paid_date": fee.paid_date,
        "remarks": fee.remarks,
        "updated_at": fee.updated_at,
    }


def list_fees(
    db: Session,
    scope: TenantScope,
    month: str | None = None,
    student_id: int | None = None,
) -> dict[str, Any]:
    query = scope.scoped(db, StudentFee)
    if month:
        query = query.filter(StudentFee.month == month)
    if student_id is not None:
        query = query.filter(StudentFee.student_id == student_id)
    fees = query.order_by(StudentFee.month.desc(), StudentFee.id).all()
    return {"fees": [_fee_dict(fee) for fee in fees], "totals": aggregation.fee_totals(fees).as_dict()}


def upsert_fee(db: Session, scope: TenantScope, payload: Any) -> dict[str, Any]:
    scope.require_writer()
    student = scope.require_student(db, payload.student_id)
    now = datetime.utcnow()
    paid = payload.payment_status == PaymentStatus.PAID
    try:
        upsert(
            db,
            StudentFee,
            {"student_id": student.id, "month": payload.month},
            {
                "center_id": student.center_id,
                "amount": payload.amount,
                "due_date": payload.due_date,
                "payment_status": payload.payment_status.value,
                "paid_date": now if paid else None,
                "remarks": payload.remarks,
                "updated_at": now,
            },
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to save fee for student {student.id} ({payload.month}): {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save fee") from exc

    fee = (
        db.query(StudentFee)
        .filter(StudentFee.student_id == student.id, StudentFee.month == payload.month)
        .populate_existing()
        .one()
    )
    return _fee_dict(fee)


def _require_fee(db: Session, scope: TenantScope, fee_id: int) -> StudentFee:
    fee = scope.scoped(db, StudentFee).filter(StudentFee.id == fee_id).first()
    if not fee:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fee record not found")
    return fee


def toggle_fee_paid(db: Session, scope: TenantScope, fee_id: int) -> dict[str, Any]:
    scope.require_writer()
    fee = _require_fee(db, scope, fee_id)
    if fee.payment_status == PaymentStatus.PAID.value:
        fee.payment_status = PaymentStatus.UNPAID.value
        fee.paid_date = None
    else:
        fee.payment_status = PaymentStatus.PAID.value
        fee.paid_date = datetime.utcnow()
    _commit(db, "Failed to update fee")
    db.refresh(fee)
    return _fee_dict(fee)


def delete_fee(db: Session, scope: TenantScope, fee_id: int) -> None:
    scope.require_writer()
    db.delete(_require_fee(db, scope, fee_id))
    _commit(db, "Failed to delete fee")


# --- Tests and results ---

def _test_dict(test: Test) -> dict[str, Any]:
    return {
        "id": test.id,
        "name": test.name,
        "subject": test.subject,
        "date": test.date,
        "total_marks": test.total_marks,
        "grade": test.grade,
        "center_id": test.center_id,
        "uploaded_file_url": test.uploaded_file_url,
        "extracted_text": test.extracted_text,
        "created_at": test.created_at,
    }


def create_test(db: Session, scope: TenantScope, payload: Any) -> dict[str, Any]:
    target_center = scope.writable_center_id(payload.center_id)
    require_center(db, target_center)
    test = Test(
        name=payload.name,
        subject=payload.subject,
        date=payload.test_date,
        total_marks=payload.total_marks,
        grade=payload.grade,
        uploaded_file_url=payload.uploaded_file_url,
        extracted_text=payload.extracted_text,
        center_id=target_center,
    )
    db.add(test)
    _commit(db, "Failed to create test")
    db.refresh(test)
    return _test_dict(test)


def list_tests(
    db: Session,
    scope: TenantScope,
    subject: str | None = None,
    grade: str | None = None,
) -> list[dict[str, Any]]:
    query = scope.scoped(db, Test)
    if subject:
        query = query.filter(Test.subject == subject)
    if grade:
        query = query.filter(Test.grade == grade)
    return [_test_dict(test) for test in query.order_by(Test.date.desc(), Test.id.desc()).all()]


def delete_test(db: Session, scope: TenantScope, test_id: int) -> None:
    scope.require_writer()
    test = scope.require_test(db, test_id)
    db.query(TestResult).filter(TestResult.test_id == test.id).delete(synchronize_session=False)
    db.delete(test)
    _commit(db, "Failed to delete test")


def _check_marks(test: Test, student: Student, marks: Any) -> None:
    if student.center_id != test.center_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Student is not part of this test's center")
    if marks > test.total_marks:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Marks cannot exceed total marks")


def _result_dict(result: TestResult, test: Test) -> dict[str, Any]:
    return {
        "id": result.id,
        "test_id": result.test_id,
        "student_id": result.student_id,
        "student_name": result.student.name,
        "marks_obtained": result.marks_obtained,
        "total_marks": test.total_marks,
        "percentage": aggregation.result_percentage(result.marks_obtained, test.total_marks),
        "date_taken": result.date_taken,
        "notes": result.notes,
    }


def add_test_result(db: Session, scope: TenantScope, test_id: int, payload: Any) -> dict[str, Any]:
    scope.require_writer()
    test = scope.require_test(db, test_id)
    student = scope.require_student(db, payload.student_id)
    _check_marks(test, student, payload.marks_obtained)

    result = TestResult(
        test_id=test.id,
        student_id=student.id,
        marks_obtained=payload.marks_obtained,
        date_taken=payload.date_taken,
        notes=payload.notes,
    )
    db.add(result)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Duplicate result for test {test.id}, student {student.id}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Marks already recorded for this student") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to save result for test {test.id}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save marks") from exc
    db.refresh(result)
    return _result_dict(result, test)


def upsert_test_results(db: Session, scope: TenantScope, test_id: int, payload: Any) -> dict[str, Any]:
    scope.require_writer()
    test = scope.require_test(db, test_id)
    students = {student.id: student for student in scope.require_students(db, [entry.student_id for entry in payload.results])}
    for entry in payload.results:
        _check_marks(test, students[entry.student_id], entry.marks_obtained)

    try:
        for entry in payload.results:
            upsert(
                db,
                TestResult,
                {"test_id": test.id, "student_id": entry.student_id},
                {"marks_obtained": entry.marks_obtained, "date_taken": payload.date_taken, "notes": entry.notes},
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to save marks for test {test.id}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save marks") from exc

    return list_test_results(db, scope, test.id)


def list_test_results(db: Session, scope: TenantScope, test_id: int) -> dict[str, Any]:
    test = scope.require_test(db, test_id)
    results = (
        scope.scoped(db, TestResult)
        .filter(TestResult.test_id == test.id)
        .populate_existing()
        .order_by(TestResult.id)
        .all()
    )
    rows = [_result_dict(result, test) for result in results]
    return {
        "test": _test_dict(test),
        "results": rows,
        "summary": aggregation.summarize_results(rows).as_dict(),
    }


def delete_test_result(db: Session, scope: TenantScope, result_id: int) -> None:
    scope.require_writer()
    result = scope.scoped(db, TestResult).filter(TestResult.id == result_id).first()
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Result not found")
    db.delete(result)
    _commit(db, "Failed to delete result")


# --- Chapters ---

def _chapter_dict(chapter: Chapter, student_ids: set[int] | None = None) -> dict[str, Any]:
    completions = [
        entry for entry in chapter.student_chapters if student_ids is None or entry.student_id in student_ids
    ]
    return {
        "id": chapter.id,
        "subject": chapter.subject,
        "chapter_name": chapter.chapter_name,
        "grade": chapter.grade,
        "date_taught": chapter.date_taught,
        "notes": chapter.notes,
        "center_id": chapter.center_id,
        "students": [
            {"student_id": entry.student_id, "student_name": entry.student.name, "date_completed": entry.date_completed}
            for entry in completions
        ],
    }


def record_chapter(db: Session, scope: TenantScope, payload: Any) -> dict[str, Any]:
    target_center = scope.writable_center_id(payload.center_id)
    require_center(db, target_center)
    students = scope.require_students(db, payload.student_ids)
    if any(student.center_id != target_center for student in students):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    subject = payload.subject.strip()
    chapter_name = payload.chapter_name.strip()
    try:
        chapter = (
            db.query(Chapter)
            .filter(
                Chapter.center_id == target_center,
                Chapter.subject == subject,
                Chapter.chapter_name == chapter_name,
                Chapter.grade == payload.grade if payload.grade is not None else Chapter.grade.is_(None),
            )
            .first()
        )
        if chapter is None:
            chapter = Chapter(
                subject=subject,
                chapter_name=chapter_name,
                grade=payload.grade,
                date_taught=payload.date_taught,
                notes=payload.notes,
                center_id=target_center,
            )
            db.add(chapter)
            db.flush()
        for student in students:
            upsert(
                db,
                StudentChapter,
                {"student_id": student.id, "chapter_id": chapter.id},
                {"completed": True, "date_completed": payload.date_taught},
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to record chapter '{chapter_name}': {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to record chapter") from exc

    db.refresh(chapter)
    return _chapter_dict(chapter)


def list_chapters(
    db: Session,
    scope: TenantScope,
    subject: str | None = None,
    student_id: int | None = None,
    grade: str | None = None,
) -> list[dict[str, Any]]:
    query = scope.scoped(db, Chapter)
    if subject:
        query = query.filter(Chapter.subject == subject)
    if grade:
        query = query.filter(Chapter.grade == grade)
    if scope.identity.is_parent:
        student_id = scope.identity.student_id
    if student_id is not None:
        scope.require_student(db, student_id)
        query = query.join(StudentChapter).filter(StudentChapter.student_id == student_id)
    visible = {student_id} if student_id is not None else None
    chapters = query.order_by(Chapter.date_taught.desc(), Chapter.id.desc()).all()
    return [_chapter_dict(chapter, visible) for chapter in chapters]


def unique_chapters(db: Session, scope: TenantScope, subject: str | None = None) -> list[dict[str, str]]:
    query = scope.scoped(db, Chapter).with_entities(Chapter.subject, Chapter.chapter_name).distinct()
    if subject:
        query = query.filter(Chapter.subject == subject)
    return [
        {"subject": row.subject, "chapter_name": row.chapter_name}
        for row in query.order_by(Chapter.subject, Chapter.chapter_name).all()
    ]


def delete_chapter(db: Session, scope: TenantScope, chapter_id: int) -> None:
    scope.require_writer()
    db.delete(scope.require_chapter(db, chapter_id))
    _commit(db, "Failed to delete chapter")


# --- Reports ---

def dashboard(db: Session, scope: TenantScope, day: date | None = None) -> dict[str, Any]:
    day = day or date.today()
    month = day.strftime("%Y-%m")
    total_students = scope.students(db).count()
    records = scope.scoped(db, Attendance).filter(Attendance.date == day).all()
    fees = scope.scoped(db, StudentFee).filter(StudentFee.month == month).all()
    return {
        "date": day,
        "attendance": aggregation.daily_snapshot(total_students, records).as_dict(),
        "fees": {"month": month, **aggregation.fee_totals(fees).as_dict()},
        "total_tests": scope.scoped(db, Test).count(),
        "total_chapters": scope.scoped(db, Chapter).count(),
    }


def student_report(
    db: Session,
    scope: TenantScope,
    student_id: int,
    subject: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> dict[str, Any]:
    student = scope.require_student(db, student_id)
    records = _attendance_rows(db, scope, start, end, student_id=student.id)
    attendance = aggregation.summarize_attendance(records, [student])[0]

    results_query = (
        db.query(TestResult)
        .join(Test, Test.id == TestResult.test_id)
        .filter(TestResult.student_id == student.id)
    )
    if subject:
        results_query = results_query.filter(Test.subject == subject)
    results = results_query.order_by(Test.date, Test.id).all()
    rows = [
        {
            "test_id": result.test_id,
            "test_name": result.test.name,
            "subject": result.test.subject,
            "date": result.test.date,
            "marks_obtained": result.marks_obtained,
            "total_marks": result.test.total_marks,
            "percentage": aggregation.result_percentage(result.marks_obtained, result.test.total_marks),
        }
        for result in results
    ]

    chapters = db.query(Chapter).filter(Chapter.center_id == student.center_id).all()
    completed_ids = [
        chapter_id
        for (chapter_id,) in db.query(StudentChapter.chapter_id)
        .filter(StudentChapter.student_id == student.id, StudentChapter.completed.is_(True))
        .all()
    ]
    return {
        "student": {
            "id": student.id,
            "name": student.name,
            "grade": student.grade,
            "school_name": student.school_name,
            "parent_name": student.parent_name,
            "contact_number": student.contact_number,
        },
        "attendance": attendance.as_dict(),
        "attendance_records": [
            {"date": record.date, "status": record.status, "time_in": record.time_in, "time_out": record.time_out}
            for record in records
        ],
        "tests": rows,
        "test_summary": aggregation.summarize_results(rows).as_dict(),
        "chapters": aggregation.chapter_completion(chapters, completed_ids, subject=subject).as_dict(),
    }


def parent_overview(
    db: Session,
    scope: TenantScope,
    start: date | None = None,
    end: date | None = None,
) -> dict[str, Any]:
    if not scope.identity.is_parent or scope.identity.student_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only parent accounts have an overview")
    report = student_report(db, scope, scope.identity.student_id, start=start, end=end)
    report["chapter_log"] = list_chapters(db, scope)
    return report


# --- Admin analytics ---

def admin_analytics(db: Session) -> dict[str, Any]:
    attendance = db.query(Attendance).join(Student, Student.id == Attendance.student_id).all()
    fees = db.query(StudentFee).all()
    last_logins = dict(
        db.query(User.center_id, func.max(User.last_login)).filter(User.center_id.isnot(None)).group_by(User.center_id).all()
    )
    student_counts = dict(
        db.query(Student.center_id, func.count(Student.id)).group_by(Student.center_id).all()
    )

    overview = []
    for center in db.query(Center).order_by(Center.center_name).all():
        center_attendance = [record for record in attendance if record.student.center_id == center.id]
        center_fees = [fee for fee in fees if fee.center_id == center.id]
        overview.append(
            {
                "center_id": center.id,
                "center_name": center.center_name,
                "num_students": student_counts.get(center.id, 0),
                "attendance_rate": aggregation.presence_rate(center_attendance),
                "avg_fee_payment_percentage": aggregation.fee_payment_rate(center_fees),
                "last_active_date": last_logins.get(center.id),
            }
        )

    return {
        "total_centers": db.query(Center).count(),
        "total_students": db.query(Student).count(),
        "total_attendance_records": len(attendance),
        "total_tests_conducted": db.query(Test).count(),
        "center_wise_overview": overview,
        "monthly_attendance_trends": aggregation.monthly_attendance_counts(attendance),
        "fee_collection_trends": aggregation.monthly_fee_counts(fees),
    }
