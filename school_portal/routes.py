import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import get_db_session
from .domain import Action, Principal, ResourceRef, ResourceType, role_name
from .mailer import MailDispatchError, MailNotConfigured
from .middleware import Guard, get_current_principal, get_guard
from .schemas import (
    AnnouncementCreateRequest,
    AnnouncementOut,
    FamilyLinkCreateRequest,
    FamilyLinkOut,
    GradeCreateRequest,
    GradeOut,
    GradeUpdateRequest,
    LoginRequest,
    LoginResponse,
    ParentEmailRequest,
    ParentEmailResponse,
    PrincipalOut,
    StudentCreateRequest,
    StudentOut,
    StudentSummaryOut,
    StudentUpdateRequest,
    UserCreateRequest,
    UserOut,
)
from .services import (
    create_announcement,
    create_family_link,
    create_grade,
    create_student,
    create_user,
    delete_announcement,
    delete_family_link,
    delete_grade,
    delete_student,
    get_student,
    list_announcements,
    list_family_links,
    list_grades,
    list_students,
    list_users,
    login_user,
    student_summary,
    update_grade,
    update_student,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["School Portal"])


def _student(student_id: int) -> ResourceRef:
    return ResourceRef(ResourceType.STUDENT, id=student_id)


@router.get("/health")
def health_check(db: Session = Depends(get_db_session)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database unavailable") from e
    return {"status": "ok", "database": "connected"}


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db_session)):
    token, user = login_user(
        db,
        request.app.state.token_verifier,
        username=payload.username,
        password=payload.password,
    )
    return LoginResponse(token=token, user=UserOut.model_validate(user))


@router.get("/me", response_model=PrincipalOut)
def me(principal: Principal = Depends(get_current_principal)):
    return PrincipalOut(id=principal.id, role=role_name(principal.role), display_name=principal.display_name)


# --- Students ---


@router.get("/students", response_model=list[StudentOut])
def students_index(guard: Guard = Depends(get_guard)):
    scope = guard.require_listing(ResourceType.STUDENT)
    return list_students(guard.db, scope)


@router.post("/students", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def students_create(payload: StudentCreateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.STUDENT))
    return create_student(
        guard.db,
        first_name=payload.first_name,
        last_name=payload.last_name,
        class_name=payload.class_name,
        parent_email=payload.parent_email,
    )


@router.get("/students/{student_id}", response_model=StudentOut)
def students_show(student_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.READ, _student(student_id))
    return get_student(guard.db, student_id)


@router.patch("/students/{student_id}", response_model=StudentOut)
def students_update(student_id: int, payload: StudentUpdateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, _student(student_id))
    return update_student(guard.db, student_id=student_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@router.delete("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
def students_delete(student_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, _student(student_id))
    delete_student(guard.db, student_id=student_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/students/{student_id}/summary", response_model=StudentSummaryOut)
def students_summary(student_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.READ, _student(student_id))
    return student_summary(guard.db, student_id)


@router.post("/students/{student_id}/send-email", response_model=ParentEmailResponse)
def students_send_email(
    student_id: int,
    payload: ParentEmailRequest,
    request: Request,
    guard: Guard = Depends(get_guard),
):
    guard.require(Action.WRITE, _student(student_id))
    student = get_student(guard.db, student_id)
    if not student.parent_email:
        raise HTTPException(status_code=422, detail="Student has no parent email")
    try:
        info = request.app.state.mailer.send_parent_notice(
            recipient_email=student.parent_email,
            subject=payload.subject,
            message=payload.message,
        )
    except MailNotConfigured as exc:
        raise HTTPException(status_code=500, detail="Email not configured") from exc
    except MailDispatchError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return ParentEmailResponse(success=True, info=info)


# --- Grades ---


@router.get("/students/{student_id}/grades", response_model=list[GradeOut])
def grades_index(student_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.READ, ResourceRef(ResourceType.GRADE, owner_student_id=student_id))
    return list_grades(guard.db, student_id)


@router.post("/students/{student_id}/grades", response_model=GradeOut, status_code=status.HTTP_201_CREATED)
def grades_create(student_id: int, payload: GradeCreateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.GRADE, owner_student_id=student_id))
    return create_grade(
        guard.db,
        student_id=student_id,
        subject=payload.subject,
        score=payload.score,
        date=payload.date,
        note=payload.note,
    )


@router.patch("/grades/{grade_id}", response_model=GradeOut)
def grades_update(grade_id: int, payload: GradeUpdateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.GRADE, id=grade_id))
    return update_grade(guard.db, grade_id=grade_id, changes=payload.model_dump(exclude_unset=True, exclude_none=True))


@router.delete("/grades/{grade_id}", status_code=status.HTTP_204_NO_CONTENT)
def grades_delete(grade_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.GRADE, id=grade_id))
    delete_grade(guard.db, grade_id=grade_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Announcements ---


@router.get("/announcements", response_model=list[AnnouncementOut])
def announcements_index(guard: Guard = Depends(get_guard)):
    scope = guard.require_listing(ResourceType.ANNOUNCEMENT)
    return list_announcements(guard.db, scope)


@router.post("/announcements", response_model=AnnouncementOut, status_code=status.HTTP_201_CREATED)
def announcements_create(payload: AnnouncementCreateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.ANNOUNCEMENT))
    return create_announcement(
        guard.db,
        title=payload.title,
        text=payload.text,
        class_name=payload.class_name,
        author_id=guard.principal.id,
    )


@router.delete("/announcements/{announcement_id}", status_code=status.HTTP_204_NO_CONTENT)
def announcements_delete(announcement_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.ANNOUNCEMENT, id=announcement_id))
    delete_announcement(guard.db, announcement_id=announcement_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- User accounts ---


@router.get("/users", response_model=list[UserOut])
def users_index(guard: Guard = Depends(get_guard)):
    guard.require_listing(ResourceType.USER_ACCOUNT)
    return list_users(guard.db)


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def users_create(payload: UserCreateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.USER_ACCOUNT))
    return create_user(
        guard.db,
        username=payload.username,
        raw_password=payload.password,
        role=payload.role,
        name=payload.name,
        email=payload.email,
    )


# --- Family links ---


@router.get("/family-links", response_model=list[FamilyLinkOut])
def family_links_index(guard: Guard = Depends(get_guard)):
    scope = guard.require_listing(ResourceType.FAMILY_LINK)
    owner = None if scope.unrestricted else guard.principal.id
    return list_family_links(guard.db, scope, user_id=owner)


@router.post("/family-links", response_model=FamilyLinkOut, status_code=status.HTTP_201_CREATED)
def family_links_create(payload: FamilyLinkCreateRequest, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.FAMILY_LINK, owner_student_id=payload.student_id))
    return create_family_link(
        guard.db,
        user_id=payload.user_id,
        student_id=payload.student_id,
        relation=payload.relation,
    )


@router.delete("/family-links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def family_links_delete(link_id: int, guard: Guard = Depends(get_guard)):
    guard.require(Action.WRITE, ResourceRef(ResourceType.FAMILY_LINK, id=link_id))
    delete_family_link(guard.db, link_id=link_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
