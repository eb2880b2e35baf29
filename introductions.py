"""
Introduction lifecycle.

An Introduction tracks one employer's interest in one candidate (optionally
for one job) from the first profile view to a hire or a closure:

    PROFILE_VIEWED -> INTRO_REQUESTED -> INTRODUCED -> INTERVIEWING
        -> OFFER_EXTENDED -> HIRED

CANDIDATE_DECLINED, CLOSED_NO_HIRE and EXPIRED branch off any open state.
Terminal records are historical and refuse every further transition except
an audited admin override.
"""
import logging
from datetime import timedelta

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

import events
from database import db, compare_and_set
from models import (
    Introduction, IntroductionAudit, IntroductionStatus, CandidateResponse,
    Candidate, Employer, Job, ResponseToken, UserRole, TERMINAL_INTRODUCTION_STATUSES,
)
from results import Result, ErrorCode
from tokens import TokenService, DEFAULT_TTL_DAYS
from utils import utcnow

logger = logging.getLogger(__name__)

OPEN_STATUSES = frozenset(IntroductionStatus) - TERMINAL_INTRODUCTION_STATUSES

# Forward moves an employer (or admin) may make after the candidate accepted
EMPLOYER_TRANSITIONS = {
    IntroductionStatus.INTERVIEWING: {IntroductionStatus.INTRODUCED},
    IntroductionStatus.OFFER_EXTENDED: {IntroductionStatus.INTERVIEWING},
    IntroductionStatus.HIRED: {IntroductionStatus.OFFER_EXTENDED},
}

RESPONSE_OUTCOMES = {
    CandidateResponse.ACCEPTED: IntroductionStatus.INTRODUCED,
    CandidateResponse.DECLINED: IntroductionStatus.CANDIDATE_DECLINED,
    CandidateResponse.QUESTIONS: IntroductionStatus.INTRO_REQUESTED,
}


def _is_admin(actor):
    return actor is not None and getattr(actor, 'role', None) == UserRole.ADMIN


def _employer_of(actor):
    if actor is None or getattr(actor, 'role', None) != UserRole.EMPLOYER:
        return None
    return actor.employer


class IntroductionEngine:
    def __init__(self, protection_days=365, view_window_days=30, token_ttl_days=DEFAULT_TTL_DAYS,
                 request_grace_days=7, expiring_soon_days=30):
        self.protection_window = timedelta(days=protection_days)
        self.view_window = timedelta(days=view_window_days)
        self.request_grace = timedelta(days=request_grace_days)
        self.expiring_soon = timedelta(days=expiring_soon_days)
        self.tokens = TokenService(ttl_days=token_ttl_days, lifecycle=self)

    # ---------- internals ----------

    def _load(self, introduction_id):
        introduction = db.session.get(Introduction, introduction_id)
        if introduction is None:
            return None, Result.failure(ErrorCode.NOT_FOUND, 'Introduction not found')
        return introduction, None

    def _authorize_employer(self, actor, introduction):
        if _is_admin(actor):
            return None
        employer = _employer_of(actor)
        if employer is None or employer.id != introduction.employer_id:
            return Result.failure(ErrorCode.FORBIDDEN, 'Not allowed to act on this introduction')
        return None

    def _audit(self, introduction, event, from_status, to_status, actor=None, note=None, now=None):
        db.session.add(IntroductionAudit(
            introduction_id=introduction.id,
            actor_id=getattr(actor, 'id', None),
            event=event,
            from_status=from_status,
            to_status=to_status,
            note=note,
            created_at=now or utcnow(),
        ))

    def _transition(self, introduction, to_status, allowed_from, event, actor=None,
                    values=None, note=None, now=None):
        """Versioned compare-and-set of the introduction's status.

        Leaves the change uncommitted so callers can bundle token writes.
        """
        from_status = introduction.status
        if from_status in TERMINAL_INTRODUCTION_STATUSES or from_status not in allowed_from:
            return Result.failure(
                ErrorCode.INVALID_TRANSITION,
                f'Cannot move introduction from {from_status.value} to {to_status.value}',
                status=from_status.value,
            )

        changes = dict(values or {})
        changes.update(status=to_status, version=introduction.version + 1)
        won = compare_and_set(
            Introduction,
            [Introduction.id == introduction.id, Introduction.version == introduction.version],
            changes,
        )
        if not won:
            db.session.rollback()
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  'Introduction was modified concurrently, reload and retry')

        db.session.expire(introduction)
        self._audit(introduction, event, from_status, to_status, actor=actor, note=note, now=now)
        logger.info("introduction %s: %s -> %s (%s)", introduction.id, from_status.value, to_status.value, event)
        return Result.success((from_status, to_status))

    def _commit_transition(self, introduction, result, actor=None):
        db.session.commit()
        from_status, to_status = result.value
        if from_status != to_status:
            events.introduction_status_changed.send(
                introduction, from_status=from_status, to_status=to_status, actor=actor)
        return Result.success(introduction)

    # ---------- employer activity ----------

    def _find(self, employer_id, candidate_id, job_id):
        return Introduction.query.filter_by(
            employer_id=employer_id, candidate_id=candidate_id, job_id=job_id
        ).first()

    def _record_activity(self, actor, candidate_id, job_id, counter, now):
        employer = _employer_of(actor)
        if employer is None:
            return Result.failure(ErrorCode.FORBIDDEN, 'Only employers can view candidate profiles')
        if db.session.get(Candidate, candidate_id) is None:
            return Result.failure(ErrorCode.NOT_FOUND, 'Candidate not found')
        if job_id is not None and db.session.get(Job, job_id) is None:
            return Result.failure(ErrorCode.NOT_FOUND, 'Job not found')

        introduction = self._find(employer.id, candidate_id, job_id)
        if introduction is None:
            introduction = Introduction(
                candidate_id=candidate_id,
                employer_id=employer.id,
                job_id=job_id,
                status=IntroductionStatus.PROFILE_VIEWED,
                profile_viewed_at=now,
                protection_starts_at=now,
                protection_ends_at=now + self.view_window,
                profile_views=1,
                resume_downloads=1 if counter == 'resume_downloads' else 0,
            )
            db.session.add(introduction)
            try:
                db.session.flush()
                self._audit(introduction, 'PROFILE_VIEWED', None, IntroductionStatus.PROFILE_VIEWED,
                            actor=actor, now=now)
                db.session.commit()
                logger.info("introduction %s: created for employer %s / candidate %s",
                            introduction.id, employer.id, candidate_id)
                return Result.success(introduction)
            except IntegrityError:
                # Another request created it first; count against that row
                db.session.rollback()
                introduction = self._find(employer.id, candidate_id, job_id)

        if introduction.status in TERMINAL_INTRODUCTION_STATUSES:
            return Result.success(introduction)

        column = getattr(Introduction, counter)
        compare_and_set(Introduction, [Introduction.id == introduction.id], {counter: column + 1})
        db.session.commit()
        return Result.success(introduction)

    def record_profile_view(self, actor, candidate_id, job_id=None, now=None):
        """Create the PROFILE_VIEWED record on first view, count repeat views."""
        return self._record_activity(actor, candidate_id, job_id, 'profile_views', now or utcnow())

    def record_resume_download(self, actor, candidate_id, job_id=None, now=None):
        return self._record_activity(actor, candidate_id, job_id, 'resume_downloads', now or utcnow())

    def request_introduction(self, actor, introduction_id, now=None):
        """PROFILE_VIEWED -> INTRO_REQUESTED; issues the candidate's response token."""
        now = now or utcnow()
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        denied = self._authorize_employer(actor, introduction)
        if denied:
            return denied

        result = self._transition(
            introduction, IntroductionStatus.INTRO_REQUESTED, {IntroductionStatus.PROFILE_VIEWED},
            'INTRO_REQUESTED', actor=actor, now=now,
            values={'intro_requested_at': now, 'last_email_sent_at': now},
        )
        if not result.ok:
            return result

        token = self.tokens.issue(introduction, now)
        self._commit_transition(introduction, result, actor)
        events.introduction_requested.send(introduction, token=token)
        return Result.success(introduction)

    def advance(self, actor, introduction_id, to_status, now=None):
        """INTRODUCED -> INTERVIEWING -> OFFER_EXTENDED -> HIRED, one step at a time."""
        now = now or utcnow()
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        denied = self._authorize_employer(actor, introduction)
        if denied:
            return denied
        if to_status not in EMPLOYER_TRANSITIONS:
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  f'{to_status.value} cannot be set directly')

        result = self._transition(introduction, to_status, EMPLOYER_TRANSITIONS[to_status],
                                  to_status.value, actor=actor, now=now)
        if not result.ok:
            return result
        return self._commit_transition(introduction, result, actor)

    # ---------- candidate response (driven by TokenService.consume) ----------

    def apply_candidate_response(self, introduction, response, message=None, now=None, actor=None):
        now = now or utcnow()
        values = {
            'candidate_response': response,
            'candidate_responded_at': now,
            'candidate_message': message,
        }
        if response == CandidateResponse.ACCEPTED:
            values.update(
                introduced_at=now,
                protection_starts_at=now,
                protection_ends_at=now + self.protection_window,
            )
        return self._transition(
            introduction, RESPONSE_OUTCOMES[response], {IntroductionStatus.INTRO_REQUESTED},
            f'CANDIDATE_{response.value}', actor=actor, values=values, note=message, now=now,
        )

    def after_candidate_response(self, introduction, response, actor=None):
        events.candidate_responded.send(introduction, response=response, actor=actor)
        if response != CandidateResponse.QUESTIONS:
            events.introduction_status_changed.send(
                introduction, from_status=IntroductionStatus.INTRO_REQUESTED,
                to_status=introduction.status, actor=actor)

    def respond(self, token_value, response, message=None, now=None):
        if message is not None and not isinstance(message, str):
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'message must be text')
        if response == CandidateResponse.QUESTIONS and not (message or '').strip():
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Please include your questions')
        return self.tokens.consume(token_value, response, message, now=now)

    # ---------- admin ----------

    def close(self, actor, introduction_id, note=None, now=None):
        """Admin-only: any open state -> CLOSED_NO_HIRE."""
        if not _is_admin(actor):
            return Result.failure(ErrorCode.FORBIDDEN, 'Admin access required')
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        result = self._transition(introduction, IntroductionStatus.CLOSED_NO_HIRE, OPEN_STATUSES,
                                  'ADMIN_CLOSED', actor=actor, note=note, now=now)
        if not result.ok:
            return result
        return self._commit_transition(introduction, result, actor)

    def set_status(self, actor, introduction_id, new_status, note=None, now=None):
        """Admin escape hatch: move to any status, bypassing the transition table.

        Only guarded by the admin role and the version check. Every use is
        written to the audit log and logged at WARNING.
        """
        now = now or utcnow()
        if not _is_admin(actor):
            return Result.failure(ErrorCode.FORBIDDEN, 'Admin access required')
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        from_status = introduction.status
        if from_status == new_status:
            return Result.failure(ErrorCode.VALIDATION_ERROR, f'Introduction is already {new_status.value}')

        values = {'status': new_status, 'version': introduction.version + 1}
        if new_status == IntroductionStatus.INTRO_REQUESTED and introduction.intro_requested_at is None:
            values['intro_requested_at'] = now
        if new_status == IntroductionStatus.INTRODUCED and introduction.introduced_at is None:
            values.update(introduced_at=now, protection_starts_at=now,
                          protection_ends_at=now + self.protection_window)

        won = compare_and_set(
            Introduction,
            [Introduction.id == introduction.id, Introduction.version == introduction.version],
            values,
        )
        if not won:
            db.session.rollback()
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  'Introduction was modified concurrently, reload and retry')

        db.session.expire(introduction)
        self._audit(introduction, 'ADMIN_OVERRIDE', from_status, new_status, actor=actor, note=note, now=now)
        logger.warning("introduction %s: admin override by user %s: %s -> %s",
                       introduction.id, actor.id, from_status.value, new_status.value)
        return self._commit_transition(introduction, Result.success((from_status, new_status)), actor)

    def add_note(self, actor, introduction_id, note, now=None):
        now = now or utcnow()
        if not _is_admin(actor):
            return Result.failure(ErrorCode.FORBIDDEN, 'Admin access required')
        if not isinstance(note, str) or not note.strip():
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Note cannot be empty')
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing

        entry = f"[{now.strftime('%Y-%m-%d %H:%M')}] {note.strip()}"
        introduction.admin_notes = f"{introduction.admin_notes}\n{entry}" if introduction.admin_notes else entry
        self._audit(introduction, 'NOTE', introduction.status, introduction.status, actor=actor, note=note, now=now)
        db.session.commit()
        return Result.success(introduction)

    def reset_to_requested(self, actor, introduction_id, note=None, now=None):
        """Admin answered the candidate's questions: clear the response and re-invite."""
        now = now or utcnow()
        if not _is_admin(actor):
            return Result.failure(ErrorCode.FORBIDDEN, 'Admin access required')
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        if (introduction.status != IntroductionStatus.INTRO_REQUESTED
                or introduction.candidate_response != CandidateResponse.QUESTIONS):
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  'Only introductions awaiting answers to questions can be reset')

        result = self._transition(
            introduction, IntroductionStatus.INTRO_REQUESTED, {IntroductionStatus.INTRO_REQUESTED},
            'RESET_TO_REQUESTED', actor=actor, note=note, now=now,
            values={'candidate_response': None, 'candidate_responded_at': None,
                    'last_email_sent_at': now},
        )
        if not result.ok:
            return result
        token = self.tokens.issue(introduction, now)
        db.session.commit()
        events.introduction_requested.send(introduction, token=token)
        return Result.success(introduction)

    def resend_email(self, actor, introduction_id, now=None):
        """Re-send the request email, minting a new link if the old one lapsed.

        The result value is ``(introduction, token_regenerated)``.
        """
        now = now or utcnow()
        if not _is_admin(actor):
            return Result.failure(ErrorCode.FORBIDDEN, 'Admin access required')
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        if introduction.status != IntroductionStatus.INTRO_REQUESTED:
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  'Only pending introduction requests can be re-sent')

        token = introduction.current_token
        if token is not None and token.consumed_at is not None:
            return Result.failure(ErrorCode.ALREADY_RESPONDED,
                                  'The candidate has already responded',
                                  response=token.response.value if token.response else None)

        regenerated = token is None or self.tokens.is_expired(token, now)
        if regenerated:
            token = self.tokens.issue(introduction, now)

        introduction.email_resend_count = introduction.email_resend_count + 1
        introduction.last_email_sent_at = now
        self._audit(introduction, 'EMAIL_RESENT', introduction.status, introduction.status,
                    actor=actor, now=now)
        db.session.commit()
        events.introduction_requested.send(introduction, token=token)
        logger.info("introduction %s: request email re-sent (token regenerated: %s)",
                    introduction.id, regenerated)
        return Result.success((introduction, regenerated))

    def manual_response(self, actor, introduction_id, response, note=None, now=None):
        """Record an answer the candidate gave outside the emailed link."""
        now = now or utcnow()
        if not _is_admin(actor):
            return Result.failure(ErrorCode.FORBIDDEN, 'Admin access required')
        if response not in (CandidateResponse.ACCEPTED, CandidateResponse.DECLINED):
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Response must be ACCEPT or DECLINE')
        introduction, missing = self._load(introduction_id)
        if missing:
            return missing
        if introduction.status != IntroductionStatus.INTRO_REQUESTED:
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  f'Cannot record a response while {introduction.status.value}')

        token = introduction.current_token
        if token is None or self.tokens.is_expired(token, now):
            token = self.tokens.issue(introduction, now)
            db.session.commit()
        return self.tokens.consume(token.token, response, note, now=now, actor=actor)

    # ---------- time-driven ----------

    def _request_lapsed(self, token, now):
        return (token is not None and token.consumed_at is None
                and token.expires_at <= now - self.request_grace)

    def expire_lapsed(self, now=None):
        """Expire open introductions whose window ran out; returns how many moved.

        Requests wait for their link to lapse plus a grace period instead of
        the profile-view window.
        """
        now = now or utcnow()
        lapsed = Introduction.query.filter(
            Introduction.status.in_(OPEN_STATUSES - {IntroductionStatus.INTRO_REQUESTED}),
            Introduction.protection_ends_at <= now,
        ).all()
        requested = (
            Introduction.query
            .join(ResponseToken, ResponseToken.introduction_id == Introduction.id)
            .filter(
                Introduction.status == IntroductionStatus.INTRO_REQUESTED,
                ResponseToken.consumed_at.is_(None),
                ResponseToken.expires_at <= now - self.request_grace,
            )
            .distinct()
            .all()
        )
        stale_requests = [i for i in requested if self._request_lapsed(i.current_token, now)]

        expired = 0
        for introduction in lapsed + stale_requests:
            result = self._transition(introduction, IntroductionStatus.EXPIRED, OPEN_STATUSES,
                                      'EXPIRED', now=now)
            if result.ok:
                self._commit_transition(introduction, result)
                expired += 1
        if expired:
            logger.info("Expired %d introductions", expired)
        return expired

    # ---------- read side ----------

    def stats(self, now=None):
        now = now or utcnow()
        counts = dict(
            db.session.query(Introduction.status, func.count(Introduction.id))
            .group_by(Introduction.status)
            .all()
        )
        week_ago = now - timedelta(days=7)
        return {
            'total': sum(counts.values()),
            'active': sum(n for status, n in counts.items() if status in OPEN_STATUSES),
            'byStatus': {
                'profileViewed': counts.get(IntroductionStatus.PROFILE_VIEWED, 0),
                'requested': counts.get(IntroductionStatus.INTRO_REQUESTED, 0),
                'introduced': counts.get(IntroductionStatus.INTRODUCED, 0),
                'interviewing': counts.get(IntroductionStatus.INTERVIEWING, 0),
                'offerExtended': counts.get(IntroductionStatus.OFFER_EXTENDED, 0),
                'hired': counts.get(IntroductionStatus.HIRED, 0),
                'declined': counts.get(IntroductionStatus.CANDIDATE_DECLINED, 0),
                'closedNoHire': counts.get(IntroductionStatus.CLOSED_NO_HIRE, 0),
                'expired': counts.get(IntroductionStatus.EXPIRED, 0),
            },
            'expiringSoon': Introduction.query.filter(
                Introduction.status.in_(OPEN_STATUSES),
                Introduction.protection_ends_at > now,
                Introduction.protection_ends_at <= now + self.expiring_soon,
            ).count(),
            'recentActivity': {
                'introductions': Introduction.query.filter(Introduction.introduced_at >= week_ago).count(),
                'requests': Introduction.query.filter(Introduction.intro_requested_at >= week_ago).count(),
            },
        }

    def search(self, status=None, search=None, employer_id=None, page=1, per_page=20):
        query = (
            Introduction.query
            .join(Candidate, Introduction.candidate_id == Candidate.id)
            .join(Employer, Introduction.employer_id == Employer.id)
        )
        if status is not None:
            query = query.filter(Introduction.status == status)
        if employer_id is not None:
            query = query.filter(Introduction.employer_id == employer_id)
        if search:
            search_term = f"%{search}%"
            query = query.filter(or_(
                Candidate.name.ilike(search_term),
                Candidate.email.ilike(search_term),
                Employer.company_name.ilike(search_term),
            ))
        return query.order_by(Introduction.created_at.desc(), Introduction.id.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )
