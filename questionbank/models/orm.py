import enum

from sqlalchemy import (JSON, BigInteger, Boolean, Float, ForeignKey, Index, Integer, String, Text,
                        UniqueConstraint, text)
from sqlalchemy.orm import Mapped, mapped_column

from questionbank.core.database import Base

# BIGINT ids on Postgres, INTEGER on SQLite so rowid autoincrement still applies.
ID = BigInteger().with_variant(Integer, "sqlite")


class ContextLevel(enum.IntEnum):
    SYSTEM = 10
    COURSECAT = 40
    COURSE = 50
    MODULE = 70


class QuestionStatus(str, enum.Enum):
    READY = "ready"
    HIDDEN = "hidden"
    DRAFT = "draft"


class Permission(enum.IntEnum):
    INHERIT = 0
    ALLOW = 1
    PREVENT = -1
    PROHIBIT = -1000


PREVIEW_COMPONENT = "core_question_preview"


class Context(Base):
    __tablename__ = "contexts"
    __table_args__ = (UniqueConstraint("context_level", "instance_id", name="uq_context_instance"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    context_level: Mapped[int] = mapped_column(Integer)
    instance_id: Mapped[int] = mapped_column(BigInteger, default=0)
    path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    depth: Mapped[int] = mapped_column(Integer, default=0)


class CourseCategory(Base):
    __tablename__ = "course_categories"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    parent_id: Mapped[int] = mapped_column(BigInteger, default=0)
    name: Mapped[str] = mapped_column(String(255))


class Course(Base):
    __tablename__ = "courses"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    category_id: Mapped[int] = mapped_column(BigInteger, default=0)
    shortname: Mapped[str] = mapped_column(String(255))
    fullname: Mapped[str] = mapped_column(String(255))


class Qbank(Base):
    __tablename__ = "qbanks"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    course_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("courses.id"))
    name: Mapped[str] = mapped_column(String(255))
    intro: Mapped[str | None] = mapped_column(Text, nullable=True)
    intro_format: Mapped[int] = mapped_column(Integer, default=1)
    show_description: Mapped[bool] = mapped_column(Boolean, default=False)
    time_created: Mapped[int] = mapped_column(BigInteger, default=0)
    time_modified: Mapped[int] = mapped_column(BigInteger, default=0)


class CourseModule(Base):
    __tablename__ = "course_modules"
    __table_args__ = (Index("ix_course_modules_course", "course_id", "module_name"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    course_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("courses.id"))
    module_name: Mapped[str] = mapped_column(String(50))
    instance_id: Mapped[int] = mapped_column(BigInteger)
    deletion_in_progress: Mapped[bool] = mapped_column(Boolean, default=False)


class QuestionCategory(Base):
    __tablename__ = "question_categories"
    __table_args__ = (
        Index("ix_question_categories_context_parent", "context_id", "parent_id"),
        # One top category per context; concurrent creators race on this index.
        Index("uq_question_categories_top", "context_id", unique=True,
              postgresql_where=text("parent_id = 0"), sqlite_where=text("parent_id = 0")),
    )
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    context_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("contexts.id"))
    info: Mapped[str] = mapped_column(Text, default="")
    info_format: Mapped[int] = mapped_column(Integer, default=0)
    stamp: Mapped[str] = mapped_column(String(255), unique=True)
    parent_id: Mapped[int] = mapped_column(BigInteger, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, default=999)
    idnumber: Mapped[str | None] = mapped_column(String(100), nullable=True)


class Question(Base):
    __tablename__ = "questions"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    parent_id: Mapped[int] = mapped_column(BigInteger, default=0)
    name: Mapped[str] = mapped_column(String(255))
    question_text: Mapped[str] = mapped_column(Text, default="")
    question_text_format: Mapped[int] = mapped_column(Integer, default=1)
    general_feedback: Mapped[str] = mapped_column(Text, default="")
    default_mark: Mapped[float] = mapped_column(Float, default=1.0)
    penalty: Mapped[float] = mapped_column(Float, default=0.3333333)
    qtype: Mapped[str] = mapped_column(String(20))
    length: Mapped[int] = mapped_column(Integer, default=1)
    stamp: Mapped[str] = mapped_column(String(255))
    time_created: Mapped[int] = mapped_column(BigInteger, default=0)
    time_modified: Mapped[int] = mapped_column(BigInteger, default=0)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    modified_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class QuestionBankEntry(Base):
    __tablename__ = "question_bank_entries"
    __table_args__ = (UniqueConstraint("question_category_id", "idnumber", name="uq_entry_category_idnumber"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    question_category_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("question_categories.id"))
    idnumber: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class QuestionVersion(Base):
    __tablename__ = "question_versions"
    __table_args__ = (UniqueConstraint("question_bank_entry_id", "version", name="uq_entry_version"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    question_bank_entry_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("question_bank_entries.id"))
    version: Mapped[int] = mapped_column(Integer, default=1)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"))
    status: Mapped[str] = mapped_column(String(10), default=QuestionStatus.READY.value)


class QuestionAnswer(Base):
    __tablename__ = "question_answers"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), index=True)
    answer: Mapped[str] = mapped_column(Text)
    answer_format: Mapped[int] = mapped_column(Integer, default=0)
    fraction: Mapped[float] = mapped_column(Float, default=0.0)
    feedback: Mapped[str] = mapped_column(Text, default="")
    tolerance: Mapped[float | None] = mapped_column(Float, nullable=True)


class QuestionHint(Base):
    __tablename__ = "question_hints"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), index=True)
    hint: Mapped[str] = mapped_column(Text)
    hint_format: Mapped[int] = mapped_column(Integer, default=1)
    show_num_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    clear_wrong: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class QuestionTypeOptions(Base):
    __tablename__ = "question_type_options"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), unique=True)
    options: Mapped[dict] = mapped_column(JSON, default=dict)


class QuestionReference(Base):
    __tablename__ = "question_references"
    __table_args__ = (Index("ix_question_references_item", "component", "question_area", "item_id"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    using_context_id: Mapped[int] = mapped_column(BigInteger)
    component: Mapped[str] = mapped_column(String(100))
    question_area: Mapped[str] = mapped_column(String(50))
    item_id: Mapped[int] = mapped_column(BigInteger)
    question_bank_entry_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("question_bank_entries.id"))
    version: Mapped[int | None] = mapped_column(Integer, nullable=True)


class QuestionUsage(Base):
    __tablename__ = "question_usages"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    context_id: Mapped[int] = mapped_column(BigInteger)
    component: Mapped[str] = mapped_column(String(255))
    preferred_behaviour: Mapped[str] = mapped_column(String(32), default="deferredfeedback")


class QuestionAttempt(Base):
    __tablename__ = "question_attempts"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    question_usage_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("question_usages.id"), index=True)
    slot: Mapped[int] = mapped_column(Integer, default=1)
    behaviour: Mapped[str] = mapped_column(String(32), default="deferredfeedback")
    question_id: Mapped[int] = mapped_column(BigInteger, index=True)
    max_mark: Mapped[float] = mapped_column(Float, default=1.0)
    min_fraction: Mapped[float] = mapped_column(Float, default=0.0)
    max_fraction: Mapped[float] = mapped_column(Float, default=1.0)
    response_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_modified: Mapped[int] = mapped_column(BigInteger, default=0)


class Tag(Base):
    __tablename__ = "tags"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    raw_name: Mapped[str] = mapped_column(String(255))


class TagInstance(Base):
    __tablename__ = "tag_instances"
    __table_args__ = (Index("ix_tag_instances_item", "component", "item_type", "item_id"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    tag_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("tags.id"))
    component: Mapped[str] = mapped_column(String(100))
    item_type: Mapped[str] = mapped_column(String(100))
    item_id: Mapped[int] = mapped_column(BigInteger)
    context_id: Mapped[int] = mapped_column(BigInteger)
    ordering: Mapped[int] = mapped_column(Integer, default=0)


class Comment(Base):
    __tablename__ = "comments"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    context_id: Mapped[int] = mapped_column(BigInteger)
    component: Mapped[str] = mapped_column(String(255))
    comment_area: Mapped[str] = mapped_column(String(255))
    item_id: Mapped[int] = mapped_column(BigInteger)
    content: Mapped[str] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    time_created: Mapped[int] = mapped_column(BigInteger, default=0)


class CustomFieldData(Base):
    __tablename__ = "customfield_data"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    field_name: Mapped[str] = mapped_column(String(100))
    instance_id: Mapped[int] = mapped_column(BigInteger, index=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    context_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class RoleCapability(Base):
    __tablename__ = "role_capabilities"
    __table_args__ = (UniqueConstraint("user_id", "context_id", "capability", name="uq_user_context_capability"),)
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger)
    context_id: Mapped[int] = mapped_column(BigInteger)
    capability: Mapped[str] = mapped_column(String(255))
    permission: Mapped[int] = mapped_column(Integer, default=Permission.ALLOW.value)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id: Mapped[int] = mapped_column(ID, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action: Mapped[str] = mapped_column(String(100))
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    context_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    changes: Mapped[dict] = mapped_column(JSON, default=dict)
    time_created: Mapped[int] = mapped_column(BigInteger, default=0)
