import threading
from datetime import date

import pytest

from claims import applicant_stats, parse_claim_form
from conftest import T0
from database import db
from models import ClaimedJob, Job, JobStatus, RoleLevel, SkillTier
from results import ErrorCode

VALID_FORM = {
    'phone': '+1 (555) 010-2030',
    'roleLevel': 'SENIOR',
    'salaryMin': 120000,
    'salaryMax': '150000',
    'startDateNeeded': '2026-03-01',
}


@pytest.mark.parametrize('changes, message', [
    ({'phone': ''}, 'A valid phone number is required'),
    ({'phone': '12345'}, 'A valid phone number is required'),
    ({'roleLevel': 'INTERN'}, 'roleLevel must be one of'),
    ({'salaryMin': 'lots'}, 'whole numbers'),
    ({'salaryMin': -1}, 'cannot be negative'),
    ({'salaryMin': 200000}, 'salaryMin cannot exceed salaryMax'),
    ({'candidatesNeeded': 0}, 'at least 1'),
    ({'startDateNeeded': 'next spring'}, 'ISO date'),
])
def test_claim_form_validation(changes, message):
    form, error = parse_claim_form({**VALID_FORM, **changes})

    assert form is None
    assert message in error


def test_claim_form_defaults():
    form, error = parse_claim_form({'phone': '555.010.2030', 'roleLevel': 'MID'})

    assert error is None
    assert form.role_level == RoleLevel.MID
    assert form.salary_min is None and form.salary_max is None
    assert form.start_date_needed is None
    assert form.candidates_needed == 10


def test_claim_form_rejects_empty_body():
    assert parse_claim_form({}) == (None, 'No data provided')
    assert parse_claim_form(None) == (None, 'No data provided')


def test_claim_takes_ownership(claims, employer, make_job):
    job = make_job(company_name='Initech')

    result = claims.claim(employer, job.id, VALID_FORM, now=T0)

    assert result.ok
    claimed = result.value
    assert claimed.role_level == RoleLevel.SENIOR
    assert claimed.salary_min == 120000
    assert claimed.salary_max == 150000
    assert claimed.start_date_needed == date(2026, 3, 1)
    assert claimed.candidates_needed == 10
    assert claimed.contact_phone == VALID_FORM['phone']

    db.session.expire_all()
    assert job.employer_id == employer.employer.id
    assert job.claimed_at == T0
    assert employer.employer.phone == VALID_FORM['phone']


def test_claim_keeps_existing_employer_phone(claims, make_employer, make_job):
    employer = make_employer(phone='+44 20 7946 0000')
    job = make_job()

    claims.claim(employer, job.id, VALID_FORM, now=T0)

    db.session.expire_all()
    assert employer.employer.phone == '+44 20 7946 0000'


def test_second_claim_is_rejected(claims, make_employer, make_job):
    first = make_employer(company_name='First Co')
    second = make_employer(company_name='Second Co')
    job = make_job()

    assert claims.claim(first, job.id, VALID_FORM, now=T0).ok
    result = claims.claim(second, job.id, VALID_FORM, now=T0)

    assert result.code == ErrorCode.ALREADY_CLAIMED
    db.session.expire_all()
    assert job.employer_id == first.employer.id
    assert ClaimedJob.query.count() == 1


def test_same_employer_cannot_claim_twice(claims, employer, make_job):
    job = make_job()

    claims.claim(employer, job.id, VALID_FORM, now=T0)

    assert claims.claim(employer, job.id, VALID_FORM, now=T0).code == ErrorCode.ALREADY_CLAIMED


def test_direct_job_cannot_be_claimed(claims, make_employer, make_job):
    owner = make_employer()
    job = make_job(employer=owner)

    result = claims.claim(make_employer(), job.id, VALID_FORM, now=T0)

    assert result.code == ErrorCode.ALREADY_CLAIMED


def test_claim_checks_role_form_and_job(claims, employer, candidate, make_job):
    job = make_job()

    assert claims.claim(candidate, job.id, VALID_FORM).code == ErrorCode.FORBIDDEN
    assert claims.claim(employer, job.id, {**VALID_FORM, 'roleLevel': 'BOSS'}).code == ErrorCode.VALIDATION_ERROR
    assert claims.claim(employer, 9999, VALID_FORM).code == ErrorCode.NOT_FOUND

    db.session.expire_all()
    assert job.employer_id is None


def test_concurrent_claims_have_single_winner(app, make_employer, make_job):
    employers = [make_employer(company_name=f'Racer {n}') for n in range(2)]
    employer_ids = [user.id for user in employers]
    job_id = make_job().id
    db.session.close()

    barrier = threading.Barrier(len(employer_ids))
    outcomes = []

    def claim(user_id):
        from models import User
        with app.app_context():
            actor = db.session.get(User, user_id)
            actor.employer  # load before racing
            barrier.wait()
            result = app.extensions['claims'].claim(actor, job_id, VALID_FORM, now=T0)
            outcomes.append((user_id, result.ok, result.code))

    threads = [threading.Thread(target=claim, args=(user_id,)) for user_id in employer_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    winners = [user_id for user_id, ok, _ in outcomes if ok]
    assert len(winners) == 1
    assert [code for _, ok, code in outcomes if not ok] == [ErrorCode.ALREADY_CLAIMED]
    assert ClaimedJob.query.count() == 1
    job = db.session.get(Job, job_id)
    assert job.employer.user_id == winners[0]


def test_search_only_returns_unclaimed_active_matches(claims, employer, make_job):
    open_job = make_job(title='Data Engineer', company_name='Initech')
    make_job(title='Data Analyst', company_name='Initech', status=JobStatus.CLOSED)
    make_job(title='Data Scientist', company_name='Initech', employer=employer)
    make_job(title='Chef', company_name='Bistro')
    claimed = make_job(title='Data Architect', company_name='Initech')
    claims.claim(employer, claimed.id, VALID_FORM, now=T0)

    result = claims.search_unclaimed('initech')

    assert result.ok
    assert [job.id for job in result.value.items] == [open_job.id]
    assert claims.search_unclaimed('data engineer').value.total == 1


def test_search_requires_two_characters(claims):
    assert claims.search_unclaimed('a').code == ErrorCode.VALIDATION_ERROR
    assert claims.search_unclaimed('  ').code == ErrorCode.VALIDATION_ERROR


def test_applicant_stats_projection(make_job, make_candidate, make_application):
    job = make_job()
    other_job = make_job(title='Designer')
    make_application(job, make_candidate(name='A', skill_tier=SkillTier.ELITE))
    make_application(job, make_candidate(name='B', skill_tier=SkillTier.ELITE))
    make_application(job, make_candidate(name='C', skill_tier=SkillTier.BEGINNER))
    make_application(job, make_candidate(name='D'))

    stats = applicant_stats([job.id, other_job.id])

    assert stats[job.id].applicants_count == 4
    assert stats[job.id].skills_verified_count == 3
    assert stats[job.id].tier_breakdown == {'ELITE': 2, 'ADVANCED': 0, 'INTERMEDIATE': 0, 'BEGINNER': 1}
    assert stats[other_job.id].applicants_count == 0
    assert stats[other_job.id].tier_breakdown['ELITE'] == 0


def test_list_claimed_reflects_new_applications(claims, employer, make_job, make_candidate, make_application):
    job = make_job()
    claims.claim(employer, job.id, VALID_FORM, now=T0)

    before = claims.list_claimed(employer.employer.id)
    make_application(job, make_candidate(skill_tier=SkillTier.ADVANCED))
    after = claims.list_claimed(employer.employer.id)

    assert len(before) == 1
    assert before[0].stats.applicants_count == 0
    assert after[0].stats.applicants_count == 1
    assert after[0].stats.tier_breakdown['ADVANCED'] == 1
    assert after[0].claimed_job.job_id == job.id
