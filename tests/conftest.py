import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PUBLISH_EVENTS"] = "false"
os.environ["ASYNC_CONTEXT_CLEANUP"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from questionbank.core.auth import Principal, get_current_principal
from questionbank.core.database import get_db, init_db
from questionbank.core.events import EventDispatcher
from questionbank.models.orm import Course, CourseCategory
from questionbank.services.capabilities import CapabilityChecker
from questionbank.services.categories import create_category, question_get_top_category
from questionbank.services.contexts import course_context, module_context, system_context
from questionbank.services.modules import create_qbank_module
from questionbank.services.questions import create_question

ADMIN_ID = 1
EDITOR_ID = 2


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)()
    yield session
    session.close()


@pytest.fixture
def admin():
    return Principal(id=ADMIN_ID, roles=["admin"])


@pytest.fixture
def editor():
    return Principal(id=EDITOR_ID, roles=["editor"])


@pytest.fixture
def admin_checker(db, admin):
    return CapabilityChecker(db, admin)


@pytest.fixture
def editor_checker(db, editor):
    return CapabilityChecker(db, editor)


@pytest.fixture
def events(db):
    """A dispatcher that records into `events.triggered` and never touches Redis."""
    return EventDispatcher(db=db, user_id=ADMIN_ID)


@pytest.fixture
def site_course(db):
    # The site course takes id 1.
    course = Course(category_id=0, shortname="site", fullname="Site")
    db.add(course)
    db.flush()
    return course


@pytest.fixture
def course(db, site_course):
    cat = CourseCategory(name="Science", parent_id=0)
    db.add(cat)
    db.flush()
    course = Course(category_id=cat.id, shortname="BIO101", fullname="Biology 101")
    db.add(course)
    db.flush()
    return course


@pytest.fixture
def sysctx(db):
    return system_context(db)


@pytest.fixture
def coursectx(db, course):
    return course_context(db, course.id)


@pytest.fixture
def bank(db, course, admin_checker, events):
    """A qbank module in `course`; returns its module context."""
    cm = create_qbank_module(db, admin_checker, events, course.id, "Biology bank")
    return module_context(db, cm.id)


@pytest.fixture
def top(db, bank):
    return question_get_top_category(db, bank.id)


@pytest.fixture
def category(db, bank):
    return create_category(db, bank.id, "Cells")


@pytest.fixture
def make_question(db, events, category):
    def _make(name="Q1", qtype="shortanswer", category_id=None, created_by=EDITOR_ID, idnumber=None, **kwargs):
        kwargs.setdefault("answers", [{"answer": "mitochondria", "fraction": 1.0},
                                      {"answer": "*", "fraction": 0.0}])
        return create_question(db, events, category_id or category.id, name, qtype, created_by=created_by,
                               idnumber=idnumber, **kwargs)
    return _make


@pytest.fixture
def acting(admin):
    """Who the API client acts as; tests swap `acting["principal"]`."""
    return {"principal": admin}


@pytest.fixture
def client(db, acting):
    from questionbank.main import app

    def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_current_principal] = lambda: acting["principal"]
    yield TestClient(app)
    app.dependency_overrides.clear()
