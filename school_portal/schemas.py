import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .domain import Role


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: str
    name: str
    email: str | None = None


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserOut


class PrincipalOut(BaseModel):
    id: int
    role: str
    display_name: str


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=3, max_length=150)
    password: str = Field(min_length=8)
    role: Role
    name: str = Field(default="", max_length=255)
    email: str | None = Field(default=None, max_length=255)


class StudentCreateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    class_name: str = Field(default="", max_length=32)
    parent_email: str | None = Field(default=None, max_length=255)


class StudentUpdateRequest(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=120)
    last_name: str | None = Field(default=None, min_length=1, max_length=120)
    class_name: str | None = Field(default=None, max_length=32)
    parent_email: str | None = Field(default=None, max_length=255)


class StudentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    class_name: str
    parent_email: str | None = None


class GradeCreateRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=120)
    score: float = Field(ge=0, le=100)
    date: dt.date | None = None
    note: str | None = None


class GradeUpdateRequest(BaseModel):
    subject: str | None = Field(default=None, min_length=1, max_length=120)
    score: float | None = Field(default=None, ge=0, le=100)
    date: dt.date | None = None
    note: str | None = None


class GradeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    subject: str
    score: float
    date: dt.date
    note: str | None = None


class SubjectAverage(BaseModel):
    subject: str
    avg: float
    count: int


class StudentSummaryOut(BaseModel):
    student: StudentOut
    grades: list[GradeOut]
    per_subject: list[SubjectAverage]
    overall: float | None = None


class AnnouncementCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    text: str = ""
    class_name: str | None = Field(default=None, max_length=32)


class AnnouncementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    text: str
    class_name: str | None = None
    author_id: int | None = None
    created_at: dt.datetime


class FamilyLinkCreateRequest(BaseModel):
    user_id: int
    student_id: int
    relation: str = Field(default="guardian", min_length=1, max_length=32)


class FamilyLinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    student_id: int
    relation: str


class ParentEmailRequest(BaseModel):
    subject: str | None = Field(default=None, max_length=255)
    message: str | None = None


class ParentEmailResponse(BaseModel):
    success: bool
    info: str
