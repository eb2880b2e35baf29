"""
Interview scheduling between an employer and a candidate.

The employer proposes an ordered list of future time slots, the candidate
picks the ones that work (re-picking replaces the earlier choice), and the
employer confirms exactly one of the picked slots.

Rescheduling closes the proposal as RESCHEDULED; the employer then proposes
a new one for the same application or introduction.
"""
import logging
from datetime import timedelta

import events
from database import db, compare_and_set
from models import (
    InterviewProposal, InterviewSlot, InterviewStatus, Application, Introduction,
    IntroductionStatus, UserRole,
)
from results import Result, ErrorCode
from utils import utcnow, parse_datetime

logger = logging.getLogger(__name__)

OPEN_STATUSES = (InterviewStatus.AWAITING_CANDIDATE, InterviewStatus.AWAITING_CONFIRMATION)
ACTIVE_STATUSES = OPEN_STATUSES + (InterviewStatus.SCHEDULED,)
FEEDBACK_STATUSES = (InterviewStatus.SCHEDULED, InterviewStatus.COMPLETED)
SCHEDULABLE_INTRODUCTION_STATUSES = (IntroductionStatus.INTRODUCED, IntroductionStatus.INTERVIEWING)
MAX_SLOT_LENGTH = timedelta(hours=8)
INTERVIEW_TYPES = ('VIDEO', 'PHONE', 'IN_PERSON')


def parse_slots(raw_slots, now):
    """Turn ``[{startTime, endTime}]`` into ``[(start, end)]``; returns ``(slots, error)``."""
    if not raw_slots or not isinstance(raw_slots, list):
        return None, 'At least one time slot is required'

    slots = []
    for raw in raw_slots:
        if not isinstance(raw, dict):
            return None, 'Each time slot needs a startTime and endTime'
        start = parse_datetime(raw.get('startTime'))
        end = parse_datetime(raw.get('endTime'))
        if start is None or end is None:
            return None, 'Each time slot needs a startTime and endTime'
        if end <= start:
            return None, 'End time must be after start time'
        if end - start > MAX_SLOT_LENGTH:
            return None, 'Time slots cannot be longer than 8 hours'
        if start <= now:
            return None, 'All time slots must be in the future'
        slots.append((start, end))

    ordered = sorted(slots)
    for (_, end), (next_start, _) in zip(ordered, ordered[1:]):
        if next_start < end:
            return None, 'Time slots cannot overlap'
    return slots, None


class InterviewScheduler:

    # ---------- internals ----------

    def _party(self, actor, proposal):
        """'employer', 'candidate' or 'admin' for a party to the proposal, else None"""
        role = getattr(actor, 'role', None)
        if role == UserRole.ADMIN:
            return 'admin'
        if role == UserRole.EMPLOYER and actor.employer and actor.employer.id == proposal.employer_id:
            return 'employer'
        if role == UserRole.CANDIDATE and actor.candidate and actor.candidate.id == proposal.candidate_id:
            return 'candidate'
        return None

    def _load(self, actor, proposal_id, allowed_parties):
        proposal = db.session.get(InterviewProposal, proposal_id)
        if proposal is None:
            return None, Result.failure(ErrorCode.NOT_FOUND, 'Interview not found')
        party = self._party(actor, proposal)
        if party is None:
            return None, Result.failure(ErrorCode.NOT_FOUND, 'Interview not found')
        if party not in allowed_parties:
            return None, Result.failure(ErrorCode.FORBIDDEN, 'Not allowed to perform this action')
        return proposal, None

    def _transition(self, proposal, to_status, allowed_from, values=None):
        from_status = proposal.status
        if from_status not in allowed_from:
            return Result.failure(
                ErrorCode.INVALID_TRANSITION,
                f'Cannot move interview from {from_status.value} to {to_status.value}',
                status=from_status.value,
            )
        changes = dict(values or {})
        changes.update(status=to_status, version=proposal.version + 1)
        won = compare_and_set(
            InterviewProposal,
            [InterviewProposal.id == proposal.id, InterviewProposal.version == proposal.version],
            changes,
        )
        if not won:
            db.session.rollback()
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  'Interview was modified concurrently, reload and retry')
        db.session.expire(proposal)
        logger.info("interview %s: %s -> %s", proposal.id, from_status.value, to_status.value)
        return Result.success(proposal)

    def _resolve_parent(self, actor, application_id, introduction_id):
        """Find the application or introduction the interview hangs off; returns ``(fields, error)``"""
        employer = actor.employer if getattr(actor, 'role', None) == UserRole.EMPLOYER else None
        if employer is None:
            return None, Result.failure(ErrorCode.FORBIDDEN, 'Only employers can propose interview times')

        if application_id is not None:
            application = db.session.get(Application, application_id)
            if application is None or application.job.employer_id != employer.id:
                return None, Result.failure(ErrorCode.NOT_FOUND, 'Application not found')
            return {'application_id': application.id, 'candidate_id': application.candidate_id,
                    'employer_id': employer.id}, None

        if introduction_id is not None:
            introduction = db.session.get(Introduction, introduction_id)
            if introduction is None or introduction.employer_id != employer.id:
                return None, Result.failure(ErrorCode.NOT_FOUND, 'Introduction not found')
            if introduction.status not in SCHEDULABLE_INTRODUCTION_STATUSES:
                return None, Result.failure(
                    ErrorCode.INVALID_TRANSITION,
                    f'Cannot schedule interviews for an introduction that is {introduction.status.value}')
            return {'introduction_id': introduction.id, 'candidate_id': introduction.candidate_id,
                    'employer_id': employer.id}, None

        return None, Result.failure(ErrorCode.VALIDATION_ERROR, 'applicationId or introductionId is required')

    # ---------- commands ----------

    def propose_slots(self, actor, raw_slots, application_id=None, introduction_id=None,
                      interview_type=None, duration_minutes=None, now=None):
        now = now or utcnow()
        parent, error = self._resolve_parent(actor, application_id, introduction_id)
        if error:
            return error
        slots, invalid = parse_slots(raw_slots, now)
        if invalid:
            return Result.failure(ErrorCode.VALIDATION_ERROR, invalid)

        if duration_minutes is not None and duration_minutes <= 0:
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Duration must be a positive number of minutes')

        proposal = InterviewProposal(status=InterviewStatus.AWAITING_CANDIDATE,
                                     interview_type=interview_type or 'VIDEO',
                                     duration_minutes=duration_minutes or 60, **parent)
        proposal.slots = [
            InterviewSlot(position=position, start_time=start, end_time=end)
            for position, (start, end) in enumerate(slots)
        ]
        db.session.add(proposal)
        db.session.commit()

        logger.info("interview %s: %d slots proposed by employer %s", proposal.id, len(slots), proposal.employer_id)
        events.interview_slots_proposed.send(proposal)
        return Result.success(proposal)

    def select_slots(self, actor, proposal_id, slot_ids):
        """Candidate picks a non-empty subset of the proposed slots.

        A repeat call before confirmation replaces the previous pick.
        """
        proposal, error = self._load(actor, proposal_id, ('candidate', 'admin'))
        if error:
            return error

        chosen = set(slot_ids or [])
        proposed = {slot.id for slot in proposal.slots}
        if not chosen:
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Select at least one time slot')
        if not chosen <= proposed:
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Selected slots must come from the proposed times')

        result = self._transition(proposal, InterviewStatus.AWAITING_CONFIRMATION, OPEN_STATUSES)
        if not result.ok:
            return result
        for slot in proposal.slots:
            slot.selected = slot.id in chosen
        db.session.commit()

        events.interview_slots_selected.send(proposal)
        return Result.success(proposal)

    def confirm_slot(self, actor, proposal_id, slot_id, meeting_platform=None, interviewer_id=None):
        """Employer fixes the interview on one of the candidate's picks."""
        proposal, error = self._load(actor, proposal_id, ('employer', 'admin'))
        if error:
            return error

        slot = next((s for s in proposal.slots if s.id == slot_id), None)
        if proposal.status == InterviewStatus.AWAITING_CONFIRMATION and (slot is None or not slot.selected):
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Confirm one of the times the candidate selected')

        result = self._transition(
            proposal, InterviewStatus.SCHEDULED, (InterviewStatus.AWAITING_CONFIRMATION,),
            values={'meeting_platform': meeting_platform, 'interviewer_id': interviewer_id},
        )
        if not result.ok:
            return result
        slot.confirmed = True
        db.session.commit()

        events.interview_scheduled.send(proposal)
        return Result.success(proposal)

    def mark_completed(self, actor, proposal_id):
        proposal, error = self._load(actor, proposal_id, ('employer', 'admin'))
        if error:
            return error
        result = self._transition(proposal, InterviewStatus.COMPLETED, (InterviewStatus.SCHEDULED,))
        if result.ok:
            db.session.commit()
        return result

    def cancel(self, actor, proposal_id, reason=None):
        """Either party may cancel while the interview is not yet completed."""
        proposal, error = self._load(actor, proposal_id, ('employer', 'candidate', 'admin'))
        if error:
            return error
        result = self._transition(proposal, InterviewStatus.CANCELLED, ACTIVE_STATUSES,
                                  values={'cancel_reason': reason})
        if not result.ok:
            return result
        db.session.commit()
        events.interview_cancelled.send(proposal, reason=reason)
        return result

    def reschedule(self, actor, proposal_id, reason=None):
        """Employer withdraws the current times; the interview closes as RESCHEDULED.

        New times are proposed as a fresh interview for the same application
        or introduction.
        """
        proposal, error = self._load(actor, proposal_id, ('employer', 'admin'))
        if error:
            return error
        result = self._transition(proposal, InterviewStatus.RESCHEDULED, ACTIVE_STATUSES,
                                  values={'reschedule_reason': reason})
        if not result.ok:
            return result
        db.session.commit()
        events.interview_rescheduled.send(proposal, reason=reason)
        return result

    def request_reschedule(self, actor, proposal_id, reason, now=None):
        """Candidate asks for new times; the status stays put until the employer acts"""
        now = now or utcnow()
        if not isinstance(reason, str) or not reason.strip():
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Please give a reason for rescheduling')
        proposal, error = self._load(actor, proposal_id, ('candidate',))
        if error:
            return error
        if proposal.status not in ACTIVE_STATUSES:
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  f'Cannot reschedule an interview that is {proposal.status.value}',
                                  status=proposal.status.value)
        result = self._transition(proposal, proposal.status, ACTIVE_STATUSES,
                                  values={'reschedule_requested_at': now,
                                          'reschedule_request_reason': reason.strip()})
        if not result.ok:
            return result
        db.session.commit()
        events.interview_reschedule_requested.send(proposal, reason=reason.strip())
        return result

    def record_feedback(self, actor, proposal_id, feedback):
        if not isinstance(feedback, str):
            return Result.failure(ErrorCode.VALIDATION_ERROR, 'Feedback must be text')
        proposal, error = self._load(actor, proposal_id, ('employer', 'admin'))
        if error:
            return error
        if proposal.status not in FEEDBACK_STATUSES:
            return Result.failure(ErrorCode.INVALID_TRANSITION,
                                  f'Cannot record feedback while {proposal.status.value}',
                                  status=proposal.status.value)
        result = self._transition(proposal, proposal.status, FEEDBACK_STATUSES, values={'feedback': feedback})
        if result.ok:
            db.session.commit()
        return result

    def update_notes(self, actor, proposal_id, notes):
        proposal, error = self._load(actor, proposal_id, ('employer', 'admin'))
        if error:
            return error
        proposal.notes = notes
        db.session.commit()
        return Result.success(proposal)

    def cancel_stale(self, now=None):
        """Cancel open proposals whose every slot has already started"""
        now = now or utcnow()
        cancelled = 0
        for proposal in InterviewProposal.query.filter(InterviewProposal.status.in_(OPEN_STATUSES)).all():
            if any(slot.start_time > now for slot in proposal.slots):
                continue
            result = self._transition(proposal, InterviewStatus.CANCELLED, OPEN_STATUSES,
                                      values={'cancel_reason': 'All proposed times have passed'})
            if result.ok:
                db.session.commit()
                events.interview_cancelled.send(proposal, reason=proposal.cancel_reason)
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d stale interview proposals", cancelled)
        return cancelled

    # ---------- queries ----------

    def get(self, actor, proposal_id):
        proposal, error = self._load(actor, proposal_id, ('employer', 'candidate', 'admin'))
        return error or Result.success(proposal)

    def list_for(self, actor, status=None, application_id=None):
        query = InterviewProposal.query
        role = getattr(actor, 'role', None)
        if role == UserRole.EMPLOYER and actor.employer:
            query = query.filter(InterviewProposal.employer_id == actor.employer.id)
        elif role == UserRole.CANDIDATE and actor.candidate:
            query = query.filter(InterviewProposal.candidate_id == actor.candidate.id)
        elif role != UserRole.ADMIN:
            return []
        if status:
            query = query.filter(InterviewProposal.status.in_(status))
        if application_id is not None:
            query = query.filter(InterviewProposal.application_id == application_id)
        return query.order_by(InterviewProposal.created_at.desc(), InterviewProposal.id.desc()).all()
