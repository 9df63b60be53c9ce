import logging
import re
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .domain import Role, normalize_role, role_name
from .models import Announcement, AuthLog, FamilyLink, Grade, Student, User
from .policy import ScopeFilter
from .security import TokenVerifier, hash_password, verify_password

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


def _normalize_email(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    normalized = value.lower().strip()
    if not EMAIL_PATTERN.match(normalized):
        raise HTTPException(status_code=400, detail="Invalid email format")
    return normalized


def log_auth_event(db: Session, user_id: str, event_type: str, details: str = "") -> None:
    try:
        db.add(AuthLog(user_id=user_id, event_type=event_type, timestamp=datetime.now(timezone.utc), details=details))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to write auth log: {e}")


# --- Accounts ---


def login_user(db: Session, verifier: TokenVerifier, *, username: str, password: str) -> tuple[str, User]:
    user = db.query(User).filter(User.username == username.strip()).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        log_auth_event(db, username.strip(), "Login Failed", "Invalid credentials")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = verifier.create_access_token(
        subject=str(user.id),
        role=role_name(normalize_role(user.role)),
        name=user.name,
    )
    log_auth_event(db, str(user.id), "Login Success")
    return token, user


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.username).all()


def create_user(
    db: Session,
    *,
    username: str,
    raw_password: str,
    role: Role,
    name: str,
    email: str | None,
) -> User:
    username = username.strip()
    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=409, detail="Username already exists")
    user = User(
        username=username,
        password_hash=hash_password(raw_password),
        role=role.value,
        name=name.strip(),
        email=_normalize_email(email),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def seed_default_admin(db: Session, *, username: str, password: str) -> bool:
    if db.query(User).first():
        logger.info("DB already seeded.")
        return False
    db.add(
        User(
            username=username,
            password_hash=hash_password(password),
            role=Role.ADMIN.value,
            name="Administrator",
            is_active=True,
        )
    )
    db.commit()
    logger.info(f"Seeded default admin account '{username}'.")
    return True


# --- Students ---


def list_students(db: Session, scope: ScopeFilter) -> list[Student]:
    query = select(Student).order_by(Student.class_name, Student.last_name, Student.first_name)
    return list(db.scalars(scope.apply(query, Student.id)).all())


def get_student(db: Session, student_id: int) -> Student:
    student = db.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


def create_student(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    class_name: str,
    parent_email: str | None,
) -> Student:
    student = Student(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        class_name=class_name.strip(),
        parent_email=_normalize_email(parent_email),
    )
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


def update_student(db: Session, *, student_id: int, changes: dict) -> Student:
    student = get_student(db, student_id)
    if "parent_email" in changes:
        changes["parent_email"] = _normalize_email(changes["parent_email"])
    for key, value in changes.items():
        if isinstance(value, str) and key != "parent_email":
            value = value.strip()
        setattr(student, key, value)
    db.commit()
    db.refresh(student)
    return student


def delete_student(db: Session, *, student_id: int) -> None:
    student = get_student(db, student_id)
    db.delete(student)
    db.commit()


def student_summary(db: Session, student_id: int) -> dict:
    student = get_student(db, student_id)
    grades = db.scalars(
        select(Grade).where(Grade.student_id == student_id).order_by(Grade.date.desc(), Grade.id.desc())
    ).all()
    per_subject_rows = db.execute(
        select(Grade.subject, func.avg(Grade.score), func.count(Grade.id))
        .where(Grade.student_id == student_id)
        .group_by(Grade.subject)
        .order_by(Grade.subject)
    ).all()
    overall = db.execute(select(func.avg(Grade.score)).where(Grade.student_id == student_id)).scalar()
    return {
        "student": student,
        "grades": list(grades),
        "per_subject": [
            {"subject": subject, "avg": round(avg, 2), "count": count}
            for subject, avg, count in per_subject_rows
        ],
        "overall": round(overall, 2) if overall is not None else None,
    }


# --- Grades ---


def list_grades(db: Session, student_id: int) -> list[Grade]:
    get_student(db, student_id)
    return list(
        db.scalars(
            select(Grade).where(Grade.student_id == student_id).order_by(Grade.date.desc(), Grade.id.desc())
        ).all()
    )


def create_grade(db: Session, *, student_id: int, subject: str, score: float, date=None, note=None) -> Grade:
    get_student(db, student_id)
    grade = Grade(student_id=student_id, subject=subject.strip(), score=score, note=note)
    if date is not None:
        grade.date = date
    db.add(grade)
    db.commit()
    db.refresh(grade)
    return grade


def get_grade(db: Session, grade_id: int) -> Grade:
    grade = db.get(Grade, grade_id)
    if not grade:
        raise HTTPException(status_code=404, detail="Grade not found")
    return grade


def update_grade(db: Session, *, grade_id: int, changes: dict) -> Grade:
    grade = get_grade(db, grade_id)
    for key, value in changes.items():
        setattr(grade, key, value.strip() if key == "subject" else value)
    db.commit()
    db.refresh(grade)
    return grade


def delete_grade(db: Session, *, grade_id: int) -> None:
    grade = get_grade(db, grade_id)
    db.delete(grade)
    db.commit()


# --- Announcements ---


def list_announcements(db: Session, scope: ScopeFilter) -> list[Announcement]:
    query = select(Announcement).order_by(Announcement.created_at.desc(), Announcement.id.desc())
    query = scope.apply_audience(query, Announcement.class_name, Student.class_name, Student.id)
    return list(db.scalars(query).all())


def create_announcement(
    db: Session,
    *,
    title: str,
    text: str,
    class_name: str | None,
    author_id: int | None,
) -> Announcement:
    announcement = Announcement(title=title.strip(), text=text, class_name=class_name, author_id=author_id)
    db.add(announcement)
    db.commit()
    db.refresh(announcement)
    return announcement


def delete_announcement(db: Session, *, announcement_id: int) -> None:
    announcement = db.get(Announcement, announcement_id)
    if not announcement:
        raise HTTPException(status_code=404, detail="Announcement not found")
    db.delete(announcement)
    db.commit()


# --- Family links ---


def list_family_links(db: Session, scope: ScopeFilter, *, user_id: int | None = None) -> list[FamilyLink]:
    query = select(FamilyLink).order_by(FamilyLink.student_id, FamilyLink.user_id)
    if user_id is not None:
        # Co-guardians of the same student stay hidden from each other.
        query = query.where(FamilyLink.user_id == user_id)
    return list(db.scalars(scope.apply(query, FamilyLink.student_id)).all())


def create_family_link(db: Session, *, user_id: int, student_id: int, relation: str) -> FamilyLink:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if normalize_role(user.role) is not Role.FAMILY:
        raise HTTPException(status_code=400, detail="Only family accounts can be linked to students")
    get_student(db, student_id)

    link = FamilyLink(user_id=user_id, student_id=student_id, relation=relation.strip())
    db.add(link)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Family link already exists") from exc
    db.refresh(link)
    return link


def delete_family_link(db: Session, *, link_id: int) -> None:
    link = db.get(FamilyLink, link_id)
    if not link:
        raise HTTPException(status_code=404, detail="Family link not found")
    db.delete(link)
    db.commit()
