import itertools
from datetime import datetime, timedelta

import pytest

from app import create_app
from database import db
from models import User, UserRole, Employer, Candidate, CandidateResponse, Job, JobStatus, Application

# Fixed clock for engine-level tests; route tests use the real clock
T0 = datetime(2026, 1, 5, 12, 0, 0)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'test.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'SMTP_ENABLED': False,
        'ADMIN_EMAILS': 'ops@example.com',
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


class ApiClient:
    """Test client that runs each request in a fresh app context, as a server would.

    Flask-Login caches the loaded user on ``g``, so requests must not share
    the fixture's context.
    """

    def __init__(self, app):
        self.app = app
        self.client = app.test_client()

    def open(self, method, url, user=None, json=None, headers=None):
        headers = dict(headers or {})
        if user is not None:
            headers.update({'X-User-Id': str(user.id), 'X-User-Role': user.role.value})
        with self.app.app_context():
            response = self.client.open(url, method=method, json=json, headers=headers)
        db.session.expire_all()
        return response

    def get(self, url, **kwargs):
        return self.open('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self.open('POST', url, **kwargs)

    def patch(self, url, **kwargs):
        return self.open('PATCH', url, **kwargs)

    def delete(self, url, **kwargs):
        return self.open('DELETE', url, **kwargs)


@pytest.fixture
def api(app):
    return ApiClient(app)


@pytest.fixture
def engine(app):
    return app.extensions['introductions']


@pytest.fixture
def claims(app):
    return app.extensions['claims']


@pytest.fixture
def scheduler(app):
    return app.extensions['interviews']


_ids = itertools.count(1)


@pytest.fixture
def make_employer(app):
    def _make(company_name='Acme Corp', **fields):
        n = next(_ids)
        user = User(email=f'employer{n}@example.com', name=f'Hiring Manager {n}', role=UserRole.EMPLOYER)
        user.employer = Employer(company_name=company_name, contact_name=user.name,
                                 contact_email=user.email, **fields)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_candidate(app):
    def _make(name='Jane Doe', skill_tier=None):
        n = next(_ids)
        user = User(email=f'candidate{n}@example.com', name=name, role=UserRole.CANDIDATE)
        user.candidate = Candidate(name=name, email=user.email, skill_tier=skill_tier)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_admin(app):
    def _make():
        n = next(_ids)
        user = User(email=f'admin{n}@example.com', name='Admin', role=UserRole.ADMIN)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_job(app):
    def _make(title='Backend Engineer', company_name='Acme Corp', employer=None, **fields):
        fields.setdefault('status', JobStatus.ACTIVE)
        job = Job(title=title, company_name=company_name, **fields)
        if employer is not None:
            job.employer_id = employer.employer.id
            job.claimed_at = T0
            job.source = 'DIRECT'
        db.session.add(job)
        db.session.commit()
        return job
    return _make


@pytest.fixture
def make_application(app):
    def _make(job, candidate):
        application = Application(job_id=job.id, candidate_id=candidate.candidate.id)
        db.session.add(application)
        db.session.commit()
        return application
    return _make


@pytest.fixture
def employer(make_employer):
    return make_employer()


@pytest.fixture
def candidate(make_candidate):
    return make_candidate()


@pytest.fixture
def admin(make_admin):
    return make_admin()


@pytest.fixture
def requested(engine, employer, candidate):
    """An introduction the employer requested at ``now`` (defaults to T0)"""
    def _make(now=T0, job_id=None):
        viewed = engine.record_profile_view(employer, candidate.candidate.id, job_id=job_id, now=now)
        assert viewed.ok
        result = engine.request_introduction(employer, viewed.value.id, now=now)
        assert result.ok
        return result.value
    return _make


@pytest.fixture
def introduced(engine, requested):
    """An introduction the candidate accepted one hour after the request"""
    def _make(now=T0):
        introduction = requested(now=now)
        result = engine.respond(introduction.current_token.token, CandidateResponse.ACCEPTED, now=now + timedelta(hours=1))
        assert result.ok
        return result.value
    return _make
