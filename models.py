from database import db
from flask_login import UserMixin
from sqlalchemy import Enum, text
import enum

from utils import utcnow


class UserRole(enum.Enum):
    ADMIN = "ADMIN"
    EMPLOYER = "EMPLOYER"
    CANDIDATE = "CANDIDATE"


class JobStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"


class RoleLevel(enum.Enum):
    ENTRY = "ENTRY"
    MID = "MID"
    SENIOR = "SENIOR"
    LEAD = "LEAD"
    EXECUTIVE = "EXECUTIVE"


class SkillTier(enum.Enum):
    ELITE = "ELITE"
    ADVANCED = "ADVANCED"
    INTERMEDIATE = "INTERMEDIATE"
    BEGINNER = "BEGINNER"


class IntroductionStatus(enum.Enum):
    PROFILE_VIEWED = "PROFILE_VIEWED"
    INTRO_REQUESTED = "INTRO_REQUESTED"
    INTRODUCED = "INTRODUCED"
    INTERVIEWING = "INTERVIEWING"
    OFFER_EXTENDED = "OFFER_EXTENDED"
    HIRED = "HIRED"
    CANDIDATE_DECLINED = "CANDIDATE_DECLINED"
    CLOSED_NO_HIRE = "CLOSED_NO_HIRE"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self):
        return self in TERMINAL_INTRODUCTION_STATUSES


TERMINAL_INTRODUCTION_STATUSES = frozenset({
    IntroductionStatus.HIRED,
    IntroductionStatus.CANDIDATE_DECLINED,
    IntroductionStatus.CLOSED_NO_HIRE,
    IntroductionStatus.EXPIRED,
})


class CandidateResponse(enum.Enum):
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    QUESTIONS = "QUESTIONS"


class InterviewStatus(enum.Enum):
    AWAITING_CANDIDATE = "AWAITING_CANDIDATE"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"

    @property
    def is_terminal(self):
        return self in (InterviewStatus.COMPLETED, InterviewStatus.CANCELLED, InterviewStatus.RESCHEDULED)


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120))
    role = db.Column(Enum(UserRole), nullable=False, default=UserRole.CANDIDATE)
    created_at = db.Column(db.DateTime, default=utcnow)

    employer = db.relationship('Employer', backref='user', uselist=False)
    candidate = db.relationship('Candidate', backref='user', uselist=False)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN


class Employer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    company_name = db.Column(db.String(200), nullable=False)
    contact_name = db.Column(db.String(120))
    contact_email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    logo = db.Column(db.String(512))
    website = db.Column(db.String(512))
    industry = db.Column(db.String(100))
    description = db.Column(db.Text)
    location = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=utcnow)


class Candidate(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(20))
    location = db.Column(db.String(100))
    current_role = db.Column(db.String(120))
    image = db.Column(db.String(512))

    # Set once the candidate has a verified skills assessment
    skill_tier = db.Column(Enum(SkillTier))
    created_at = db.Column(db.DateTime, default=utcnow)


class Job(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    company_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    location = db.Column(db.String(100))
    job_type = db.Column(db.String(50))  # FULL_TIME, PART_TIME, CONTRACT
    remote = db.Column(db.Boolean, default=False)
    salary_min = db.Column(db.Integer)
    salary_max = db.Column(db.Integer)
    status = db.Column(Enum(JobStatus), default=JobStatus.ACTIVE)
    source = db.Column(db.String(50), default='AGGREGATED')  # AGGREGATED, DIRECT

    # Ownership; both unset for aggregated jobs nobody has claimed yet
    employer_id = db.Column(db.Integer, db.ForeignKey('employer.id'))
    claimed_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)

    employer = db.relationship('Employer', backref='jobs')
    applications = db.relationship('Application', backref='job', lazy=True)


class ClaimedJob(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey('job.id'), unique=True, nullable=False)
    employer_id = db.Column(db.Integer, db.ForeignKey('employer.id'), nullable=False)
    claimed_at = db.Column(db.DateTime, nullable=False)
    contact_phone = db.Column(db.String(20))
    role_level = db.Column(Enum(RoleLevel), nullable=False)
    salary_min = db.Column(db.Integer)
    salary_max = db.Column(db.Integer)
    start_date_needed = db.Column(db.Date)
    candidates_needed = db.Column(db.Integer, nullable=False, default=10)

    job = db.relationship('Job', backref=db.backref('claim', uselist=False))
    employer = db.relationship('Employer')


class Application(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey('job.id'), nullable=False)
    candidate_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=False)
    status = db.Column(db.String(50), default='APPLIED')
    created_at = db.Column(db.DateTime, default=utcnow)

    candidate = db.relationship('Candidate', backref='applications')

    __table_args__ = (db.UniqueConstraint('job_id', 'candidate_id'),)


class Introduction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    candidate_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=False)
    employer_id = db.Column(db.Integer, db.ForeignKey('employer.id'), nullable=False)
    job_id = db.Column(db.Integer, db.ForeignKey('job.id'))
    status = db.Column(Enum(IntroductionStatus), nullable=False, default=IntroductionStatus.PROFILE_VIEWED)

    profile_viewed_at = db.Column(db.DateTime, nullable=False)
    intro_requested_at = db.Column(db.DateTime)
    candidate_responded_at = db.Column(db.DateTime)
    introduced_at = db.Column(db.DateTime)

    candidate_response = db.Column(Enum(CandidateResponse))
    candidate_message = db.Column(db.Text)

    protection_starts_at = db.Column(db.DateTime, nullable=False)
    protection_ends_at = db.Column(db.DateTime, nullable=False)

    profile_views = db.Column(db.Integer, nullable=False, default=1)
    resume_downloads = db.Column(db.Integer, nullable=False, default=0)

    admin_notes = db.Column(db.Text)
    last_email_sent_at = db.Column(db.DateTime)
    email_resend_count = db.Column(db.Integer, nullable=False, default=0)

    # Bumped on every state write; compared on update
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    candidate = db.relationship('Candidate')
    employer = db.relationship('Employer')
    job = db.relationship('Job')
    tokens = db.relationship('ResponseToken', backref='introduction', lazy=True,
                             order_by='ResponseToken.id')
    audit_entries = db.relationship('IntroductionAudit', backref='introduction', lazy=True,
                                    order_by='IntroductionAudit.id')

    # NULL job_ids are distinct to the constraint; one no-job record per pair
    __table_args__ = (
        db.UniqueConstraint('candidate_id', 'employer_id', 'job_id'),
        db.Index('uq_introduction_no_job', 'candidate_id', 'employer_id', unique=True,
                 sqlite_where=text('job_id IS NULL'), postgresql_where=text('job_id IS NULL')),
    )

    @property
    def current_token(self):
        return self.tokens[-1] if self.tokens else None


class ResponseToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    introduction_id = db.Column(db.Integer, db.ForeignKey('introduction.id'), nullable=False)
    issued_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    consumed_at = db.Column(db.DateTime)
    response = db.Column(Enum(CandidateResponse))


class IntroductionAudit(db.Model):
    """Append-only record of every introduction status change."""
    id = db.Column(db.Integer, primary_key=True)
    introduction_id = db.Column(db.Integer, db.ForeignKey('introduction.id'), nullable=False)
    actor_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    event = db.Column(db.String(50), nullable=False)
    from_status = db.Column(Enum(IntroductionStatus))
    to_status = db.Column(Enum(IntroductionStatus))
    note = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class InterviewProposal(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(db.Integer, db.ForeignKey('application.id'))
    introduction_id = db.Column(db.Integer, db.ForeignKey('introduction.id'))
    employer_id = db.Column(db.Integer, db.ForeignKey('employer.id'), nullable=False)
    candidate_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=False)
    status = db.Column(Enum(InterviewStatus), nullable=False, default=InterviewStatus.AWAITING_CANDIDATE)

    interview_type = db.Column(db.String(20), nullable=False, default='VIDEO')
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    meeting_platform = db.Column(db.String(50))
    interviewer_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    notes = db.Column(db.Text)
    cancel_reason = db.Column(db.Text)
    feedback = db.Column(db.Text)
    # Set when the candidate asks for new times
    reschedule_requested_at = db.Column(db.DateTime)
    reschedule_request_reason = db.Column(db.Text)
    reschedule_reason = db.Column(db.Text)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    slots = db.relationship('InterviewSlot', backref='proposal', lazy=True,
                            order_by='InterviewSlot.position',
                            cascade='all, delete-orphan')
    employer = db.relationship('Employer')
    candidate = db.relationship('Candidate')
    application = db.relationship('Application')

    @property
    def selected_slots(self):
        return [slot for slot in self.slots if slot.selected]

    @property
    def confirmed_slot(self):
        return next((slot for slot in self.slots if slot.confirmed), None)


class InterviewSlot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.Integer, db.ForeignKey('interview_proposal.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    selected = db.Column(db.Boolean, nullable=False, default=False)
    confirmed = db.Column(db.Boolean, nullable=False, default=False)
