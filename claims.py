"""
Job claiming.

Aggregated job listings arrive without an owning employer. An employer
claims one by submitting a short form; the claim is one-way and first
writer wins. Applicant and skill-tier counts shown next to claimed jobs
are a read-side projection over applications, never stored on the claim.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

import events
from database import db, compare_and_set
from models import Job, JobStatus, ClaimedJob, RoleLevel, SkillTier, Application, Candidate, UserRole
from results import Result, ErrorCode
from utils import utcnow, validate_phone, parse_date, parse_int

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES_NEEDED = 10
MIN_QUERY_LENGTH = 2


@dataclass
class ClaimForm:
    phone: str
    role_level: RoleLevel
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    start_date_needed: Optional[date] = None
    candidates_needed: int = DEFAULT_CANDIDATES_NEEDED


@dataclass
class ApplicantStats:
    applicants_count: int = 0
    skills_verified_count: int = 0
    tier_breakdown: Dict[str, int] = field(
        default_factory=lambda: {tier.value: 0 for tier in SkillTier})


@dataclass
class ClaimedJobView:
    claimed_job: ClaimedJob
    stats: ApplicantStats


def parse_claim_form(data, default_candidates_needed=DEFAULT_CANDIDATES_NEEDED):
    """Validate the claim form body; returns ``(ClaimForm, None)`` or ``(None, error)``."""
    if not data:
        return None, 'No data provided'

    phone = (data.get('phone') or '').strip()
    if not validate_phone(phone):
        return None, 'A valid phone number is required'

    try:
        role_level = RoleLevel(data.get('roleLevel'))
    except ValueError:
        return None, f"roleLevel must be one of {', '.join(level.value for level in RoleLevel)}"

    try:
        salary_min = parse_int(data.get('salaryMin'))
        salary_max = parse_int(data.get('salaryMax'))
        candidates_needed = parse_int(data.get('candidatesNeeded'), default_candidates_needed)
    except (TypeError, ValueError):
        return None, 'salaryMin, salaryMax and candidatesNeeded must be whole numbers'

    if (salary_min is not None and salary_min < 0) or (salary_max is not None and salary_max < 0):
        return None, 'Salaries cannot be negative'
    if salary_min is not None and salary_max is not None and salary_min > salary_max:
        return None, 'salaryMin cannot exceed salaryMax'
    if candidates_needed < 1:
        return None, 'candidatesNeeded must be at least 1'

    start_date_needed = None
    if data.get('startDateNeeded'):
        start_date_needed = parse_date(data['startDateNeeded'])
        if start_date_needed is None:
            return None, 'startDateNeeded must be an ISO date (YYYY-MM-DD)'

    return ClaimForm(
        phone=phone,
        role_level=role_level,
        salary_min=salary_min,
        salary_max=salary_max,
        start_date_needed=start_date_needed,
        candidates_needed=candidates_needed,
    ), None


def applicant_stats(job_ids) -> Dict[int, ApplicantStats]:
    """Applicant counts and skill-tier breakdown per job, computed from applications"""
    stats = defaultdict(ApplicantStats)
    if not job_ids:
        return stats

    rows = (
        db.session.query(Application.job_id, Candidate.skill_tier, func.count(Application.id))
        .join(Candidate, Application.candidate_id == Candidate.id)
        .filter(Application.job_id.in_(job_ids))
        .group_by(Application.job_id, Candidate.skill_tier)
        .all()
    )
    for job_id, tier, count in rows:
        entry = stats[job_id]
        entry.applicants_count += count
        if tier is not None:
            entry.skills_verified_count += count
            entry.tier_breakdown[tier.value] += count
    return stats


class JobClaimEngine:
    def __init__(self, default_candidates_needed=DEFAULT_CANDIDATES_NEEDED):
        self.default_candidates_needed = default_candidates_needed

    def search_unclaimed(self, query, page=1, per_page=20):
        """Active jobs with no owner whose company name or title matches ``query``"""
        query = (query or '').strip()
        if len(query) < MIN_QUERY_LENGTH:
            return Result.failure(ErrorCode.VALIDATION_ERROR,
                                  f'Search query must be at least {MIN_QUERY_LENGTH} characters')

        search_term = f"%{query}%"
        jobs = (
            Job.query
            .filter(Job.employer_id.is_(None), Job.claimed_at.is_(None))
            .filter(Job.status == JobStatus.ACTIVE)
            .filter(or_(Job.company_name.ilike(search_term), Job.title.ilike(search_term)))
            .order_by(Job.created_at.desc(), Job.id.desc())
            .paginate(page=page, per_page=per_page, error_out=False)
        )
        return Result.success(jobs)

    def claim(self, actor, job_id, data, now=None):
        """Take ownership of an unclaimed job; a second claimant gets ALREADY_CLAIMED."""
        now = now or utcnow()
        if actor is None or getattr(actor, 'role', None) != UserRole.EMPLOYER or actor.employer is None:
            return Result.failure(ErrorCode.FORBIDDEN, 'Only employers can claim jobs')
        employer = actor.employer

        form, error = parse_claim_form(data, self.default_candidates_needed)
        if error:
            return Result.failure(ErrorCode.VALIDATION_ERROR, error)

        job = db.session.get(Job, job_id)
        if job is None:
            return Result.failure(ErrorCode.NOT_FOUND, 'Job not found')

        won = compare_and_set(
            Job,
            [Job.id == job.id, Job.employer_id.is_(None), Job.claimed_at.is_(None)],
            {'employer_id': employer.id, 'claimed_at': now},
        )
        if not won:
            db.session.rollback()
            logger.info("Employer %s lost claim on job %s", employer.id, job_id)
            return Result.failure(ErrorCode.ALREADY_CLAIMED, 'This job has already been claimed')

        claimed = ClaimedJob(
            job_id=job.id,
            employer_id=employer.id,
            claimed_at=now,
            contact_phone=form.phone,
            role_level=form.role_level,
            salary_min=form.salary_min,
            salary_max=form.salary_max,
            start_date_needed=form.start_date_needed,
            candidates_needed=form.candidates_needed,
        )
        db.session.add(claimed)
        if not employer.phone:
            employer.phone = form.phone
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return Result.failure(ErrorCode.ALREADY_CLAIMED, 'This job has already been claimed')

        logger.info("Employer %s claimed job %s (%s)", employer.id, job.id, form.role_level.value)
        events.job_claimed.send(claimed)
        return Result.success(claimed)

    def list_claimed(self, employer_id) -> List[ClaimedJobView]:
        claims = (
            ClaimedJob.query
            .filter_by(employer_id=employer_id)
            .order_by(ClaimedJob.claimed_at.desc())
            .all()
        )
        stats = applicant_stats([claim.job_id for claim in claims])
        return [ClaimedJobView(claimed_job=claim, stats=stats[claim.job_id]) for claim in claims]
