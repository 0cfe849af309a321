from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from . import records
from .database import get_db_session
from .middleware import get_current_identity, get_tenant_scope, require_feature, require_roles
from .models import UserRole
from .policy import Identity, TenantScope
from .schemas import (
    AttendanceSetRequest,
    AuthLoginRequest,
    BulkMarksRequest,
    CenterCreateRequest,
    CenterOut,
    CenterUpdateRequest,
    ChangePasswordRequest,
    ChapterRecordRequest,
    CreateParentAccountRequest,
    FeatureToggleOut,
    FeatureToggleUpdateRequest,
    FeeUpsertRequest,
    StudentBulkRequest,
    StudentCreateRequest,
    StudentOut,
    StudentUpdateRequest,
    TestCreateRequest,
    TestResultCreateRequest,
    UserActiveRequest,
    UserOut,
)
from .services import (
    change_password,
    create_center_with_login,
    create_parent_account,
    init_admin,
    list_centers,
    login,
    set_user_active,
    update_center,
)

FUNCTION_NAMES = ("auth-login", "change-password", "create-parent-account", "init-admin")

functions_router = APIRouter(prefix="/functions", tags=["Functions"])
router = APIRouter(prefix="/api/v1", tags=["Tuition Records"])

staff_only = require_roles(UserRole.ADMIN, UserRole.CENTER)
admin_only = require_roles(UserRole.ADMIN)
DELETED = {"success": True}


# --- Functions ---

@functions_router.options("/{function_name}")
def function_preflight(function_name: str):
    if function_name not in FUNCTION_NAMES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return Response(status_code=status.HTTP_200_OK)


@functions_router.post("/auth-login")
def auth_login(payload: AuthLoginRequest | None = None, db: Session = Depends(get_db_session)):
    payload = payload or AuthLoginRequest()
    return login(db, username=payload.username, password=payload.password)


@functions_router.post("/change-password")
def rotate_password(
    payload: ChangePasswordRequest | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
):
    payload = payload or ChangePasswordRequest()
    return change_password(
        db,
        authorization=authorization,
        current_password=payload.current_password,
        new_password=payload.new_password,
        user_id=payload.user_id,
    )


@functions_router.post("/create-parent-account")
def parent_account(
    payload: CreateParentAccountRequest | None = None,
    db: Session = Depends(get_db_session),
    identity: Identity = Depends(staff_only),
):
    payload = payload or CreateParentAccountRequest()
    return create_parent_account(
        db,
        TenantScope(identity),
        username=payload.username,
        password=payload.password,
        student_id=payload.student_id,
    )


@functions_router.post("/init-admin")
def initialize_admin(db: Session = Depends(get_db_session)):
    return init_admin(db)


# --- Students ---

@router.get("/students", response_model=list[StudentOut])
def get_students(
    grade: str | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
):
    return records.list_students(db, scope, grade=grade)


@router.post("/students", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def add_student(
    payload: StudentCreateRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
):
    return records.create_student(db, scope, payload.model_dump(exclude={"center_id"}), center_id=payload.center_id)


@router.post("/students/bulk")
def bulk_add_students(
    payload: StudentBulkRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
):
    report = records.bulk_register_students(
        db, scope, payload.rows, center_id=payload.center_id, dry_run=payload.dry_run
    )
    report["created"] = [StudentOut.model_validate(student) for student in report["created"]]
    return report


@router.patch("/students/{student_id}", response_model=StudentOut)
def edit_student(
    student_id: int,
    payload: StudentUpdateRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
):
    return records.update_student(db, scope, student_id, payload.model_dump(exclude_none=True))


@router.delete("/students/{student_id}")
def remove_student(
    student_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
):
    records.delete_student(db, scope, student_id)
    return DELETED


# --- Attendance ---

@router.put("/attendance/{day}")
def save_attendance(
    day: date,
    payload: AttendanceSetRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("attendance")),
):
    return records.set_attendance_for_date(db, scope, day, payload.entries)


@router.get("/attendance")
def get_attendance(
    day: date = Query(alias="date"),
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("attendance")),
):
    return records.attendance_for_date(db, scope, day)


@router.get("/attendance/dates")
def get_attendance_dates(
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("attendance")),
):
    return records.attendance_dates(db, scope)


@router.get("/attendance/summary")
def get_attendance_summary(
    month: str | None = None,
    grade: str | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("attendance_report")),
):
    return records.attendance_summary(db, scope, month=month, grade=grade)


# --- Fees ---

@router.get("/fees")
def get_fees(
    month: str | None = None,
    student_id: int | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("finance")),
):
    return records.list_fees(db, scope, month=month, student_id=student_id)


@router.put("/fees")
def save_fee(
    payload: FeeUpsertRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("finance")),
):
    return records.upsert_fee(db, scope, payload)


@router.post("/fees/{fee_id}/toggle-paid")
def flip_fee_status(
    fee_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("finance")),
):
    return records.toggle_fee_paid(db, scope, fee_id)


@router.delete("/fees/{fee_id}")
def remove_fee(
    fee_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("finance")),
):
    records.delete_fee(db, scope, fee_id)
    return DELETED


# --- Tests ---

@router.get("/tests")
def get_tests(
    subject: str | None = None,
    grade: str | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("tests_marks")),
):
    return records.list_tests(db, scope, subject=subject, grade=grade)


@router.post("/tests", status_code=status.HTTP_201_CREATED)
def add_test(
    payload: TestCreateRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("tests_marks")),
):
    return records.create_test(db, scope, payload)


@router.delete("/tests/{test_id}")
def remove_test(
    test_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("tests_marks")),
):
    records.delete_test(db, scope, test_id)
    return DELETED


@router.get("/tests/{test_id}/results")
def get_test_results(
    test_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("tests_marks")),
):
    return records.list_test_results(db, scope, test_id)


@router.post("/tests/{test_id}/results", status_code=status.HTTP_201_CREATED)
def add_test_result(
    test_id: int,
    payload: TestResultCreateRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("tests_marks")),
):
    return records.add_test_result(db, scope, test_id, payload)


@router.put("/tests/{test_id}/results")
def save_test_results(
    test_id: int,
    payload: BulkMarksRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("tests_marks")),
):
    return records.upsert_test_results(db, scope, test_id, payload)


@router.delete("/results/{result_id}")
def remove_test_result(
    result_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("tests_marks")),
):
    records.delete_test_result(db, scope, result_id)
    return DELETED


# --- Chapters ---

@router.post("/chapters", status_code=status.HTTP_201_CREATED)
def add_chapter(
    payload: ChapterRecordRequest,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("chapter_progress")),
):
    return records.record_chapter(db, scope, payload)


@router.get("/chapters")
def get_chapters(
    subject: str | None = None,
    student_id: int | None = None,
    grade: str | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("chapter_progress")),
):
    return records.list_chapters(db, scope, subject=subject, student_id=student_id, grade=grade)


@router.get("/chapters/unique")
def get_unique_chapters(
    subject: str | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("chapter_progress")),
):
    return records.unique_chapters(db, scope, subject=subject)


@router.delete("/chapters/{chapter_id}")
def remove_chapter(
    chapter_id: int,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
    __: Identity = Depends(require_feature("chapter_progress")),
):
    records.delete_chapter(db, scope, chapter_id)
    return DELETED


# --- Reports ---

@router.get("/reports/dashboard")
def get_dashboard(
    day: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(staff_only),
):
    return records.dashboard(db, scope, day)


@router.get("/reports/students/{student_id}")
def get_student_report(
    student_id: int,
    subject: str | None = None,
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_feature("student_report")),
):
    return records.student_report(db, scope, student_id, subject=subject, start=start, end=end)


@router.get("/reports/parent")
def get_parent_overview(
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db_session),
    scope: TenantScope = Depends(get_tenant_scope),
    _: Identity = Depends(require_roles(UserRole.PARENT)),
):
    return records.parent_overview(db, scope, start=start, end=end)


# --- Feature toggles ---

@router.get("/feature-toggles", response_model=list[FeatureToggleOut])
def get_feature_toggles(
    db: Session = Depends(get_db_session),
    _: Identity = Depends(get_current_identity),
):
    return records.list_feature_toggles(db)


@router.put("/feature-toggles/{feature_name}", response_model=FeatureToggleOut)
def set_feature_toggle(
    feature_name: str,
    payload: FeatureToggleUpdateRequest,
    db: Session = Depends(get_db_session),
    _: Identity = Depends(admin_only),
):
    return records.update_feature_toggle(db, feature_name, payload.enabled)


# --- Admin ---

@router.post("/admin/centers", response_model=CenterOut, status_code=status.HTTP_201_CREATED)
def admin_create_center(
    payload: CenterCreateRequest,
    db: Session = Depends(get_db_session),
    _: Identity = Depends(admin_only),
):
    return create_center_with_login(
        db,
        center_name=payload.center_name,
        address=payload.address,
        contact_number=payload.contact_number,
        username=payload.username,
        password=payload.password,
    )


@router.get("/admin/centers", response_model=list[CenterOut])
def admin_list_centers(db: Session = Depends(get_db_session), _: Identity = Depends(admin_only)):
    return list_centers(db)


@router.patch("/admin/centers/{center_id}", response_model=CenterOut)
def admin_update_center(
    center_id: int,
    payload: CenterUpdateRequest,
    db: Session = Depends(get_db_session),
    _: Identity = Depends(admin_only),
):
    return update_center(db, center_id, payload.model_dump(exclude_none=True))


@router.patch("/admin/users/{user_id}/active", response_model=UserOut)
def admin_set_user_active(
    user_id: int,
    payload: UserActiveRequest,
    db: Session = Depends(get_db_session),
    identity: Identity = Depends(admin_only),
):
    return set_user_active(db, identity, user_id, payload.is_active)


@router.get("/admin/analytics")
def admin_analytics(db: Session = Depends(get_db_session), _: Identity = Depends(admin_only)):
    return records.admin_analytics(db)
