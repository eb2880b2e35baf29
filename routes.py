import logging
from functools import wraps

from flask import request, jsonify, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from database import db
from models import (
    UserRole, IntroductionStatus, CandidateResponse, InterviewStatus, Introduction,
)
from claims import applicant_stats
from interviews import INTERVIEW_TYPES
from results import Result, ErrorCode
from utils import isoformat, get_pagination, pagination_payload, parse_int

logger = logging.getLogger(__name__)


# ---------- helpers ----------

def _error(code, message, **extra):
    return _failure(Result.failure(code, message, **extra))


def _failure(result):
    if result.code in (ErrorCode.INVALID_TOKEN, ErrorCode.TOKEN_EXPIRED, ErrorCode.ALREADY_RESPONDED,
                       ErrorCode.ALREADY_CLAIMED, ErrorCode.INVALID_TRANSITION):
        logger.info("%s %s rejected: %s", request.method, request.path, result.code.value)
    return jsonify(result.error_body()), result.http_status


def role_required(*roles):
    """Like ``login_required`` but also checks the caller's role"""
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if current_user.role not in roles:
                return _error(ErrorCode.FORBIDDEN, f"{' or '.join(r.value.title() for r in roles)} access required")
            return view(*args, **kwargs)
        return wrapped
    return decorator


def _engine(name):
    return current_app.extensions[name]


def _actor():
    # The real User object rather than the werkzeug proxy
    return current_user._get_current_object()


def _employer_profile():
    employer = _actor().employer
    if employer is None:
        return None, _error(ErrorCode.FORBIDDEN, 'Complete your employer profile first')
    return employer, None


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text_field(data, key):
    """Optional free-text body field, stripped; returns (value, error response)"""
    value = data.get(key)
    if value is None:
        return None, None
    if not isinstance(value, str):
        return None, _error(ErrorCode.VALIDATION_ERROR, f'{key} must be text')
    return value.strip() or None, None


def _parse_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


# ---------- serializers ----------

def _candidate_payload(candidate):
    return {
        'id': candidate.id,
        'userId': candidate.user_id,
        'name': candidate.name,
        'email': candidate.email,
        'phone': candidate.phone,
        'image': candidate.image,
        'location': candidate.location,
        'currentRole': candidate.current_role,
        'skillTier': candidate.skill_tier.value if candidate.skill_tier else None,
    }


def _employer_payload(employer):
    return {
        'id': employer.id,
        'userId': employer.user_id,
        'companyName': employer.company_name,
        'logo': employer.logo,
        'contactName': employer.contact_name,
        'contactEmail': employer.contact_email,
    }


def _salary_range(job):
    if job.salary_min and job.salary_max:
        return f"${job.salary_min:,} - ${job.salary_max:,}"
    if job.salary_min:
        return f"From ${job.salary_min:,}"
    if job.salary_max:
        return f"Up to ${job.salary_max:,}"
    return None


def _job_payload(job):
    return {
        'id': job.id,
        'title': job.title,
        'companyName': job.company_name,
        'description': job.description,
        'location': job.location,
        'type': job.job_type,
        'remote': job.remote,
        'salaryMin': job.salary_min,
        'salaryMax': job.salary_max,
        'salaryRange': _salary_range(job),
        'status': job.status.value if job.status else None,
        'source': job.source,
        'claimed': job.claimed_at is not None,
        'claimedAt': isoformat(job.claimed_at),
        'createdAt': isoformat(job.created_at),
    }


def _timeline(introduction):
    return [
        {
            'date': isoformat(entry.created_at),
            'event': entry.event,
            'type': entry.to_status.value if entry.to_status else None,
            'fromStatus': entry.from_status.value if entry.from_status else None,
            'actorId': entry.actor_id,
            'note': entry.note,
        }
        for entry in introduction.audit_entries
    ]


def _introduction_payload(introduction, detail=False):
    token = introduction.current_token
    payload = {
        'id': introduction.id,
        'status': introduction.status.value,
        'profileViewedAt': isoformat(introduction.profile_viewed_at),
        'introRequestedAt': isoformat(introduction.intro_requested_at),
        'candidateRespondedAt': isoformat(introduction.candidate_responded_at),
        'candidateResponse': introduction.candidate_response.value if introduction.candidate_response else None,
        'candidateMessage': introduction.candidate_message,
        'introducedAt': isoformat(introduction.introduced_at),
        'protectionStartsAt': isoformat(introduction.protection_starts_at),
        'protectionEndsAt': isoformat(introduction.protection_ends_at),
        'profileViews': introduction.profile_views,
        'resumeDownloads': introduction.resume_downloads,
        'adminNotes': introduction.admin_notes,
        'lastEmailSentAt': isoformat(introduction.last_email_sent_at),
        'emailResendCount': introduction.email_resend_count,
        'responseTokenExpiry': isoformat(token.expires_at) if token else None,
        'createdAt': isoformat(introduction.created_at),
        'updatedAt': isoformat(introduction.updated_at),
        'candidate': _candidate_payload(introduction.candidate),
        'employer': _employer_payload(introduction.employer),
        'job': _job_payload(introduction.job) if introduction.job else None,
    }
    if detail:
        payload['timeline'] = _timeline(introduction)
    return payload


def _respond_snapshot(introduction):
    """What the candidate sees on the emailed response page"""
    employer = introduction.employer
    job = introduction.job
    return {
        'id': introduction.id,
        'status': introduction.status.value,
        'requestedAt': isoformat(introduction.intro_requested_at),
        'employer': {
            'companyName': employer.company_name,
            'logo': employer.logo,
            'website': employer.website,
            'industry': employer.industry,
            'description': employer.description,
            'location': employer.location,
        },
        'job': {
            'title': job.title,
            'location': job.location,
            'type': job.job_type,
            'remote': job.remote,
            'salaryRange': _salary_range(job),
            'description': job.description,
        } if job else None,
        'candidateName': introduction.candidate.name,
    }


def _claimed_job_payload(view):
    claim = view.claimed_job
    payload = _job_payload(claim.job)
    payload.update({
        'jobId': claim.job_id,
        'claimedAt': isoformat(claim.claimed_at),
        'roleLevel': claim.role_level.value,
        'salaryMin': claim.salary_min if claim.salary_min is not None else claim.job.salary_min,
        'salaryMax': claim.salary_max if claim.salary_max is not None else claim.job.salary_max,
        'startDateNeeded': isoformat(claim.start_date_needed),
        'candidatesNeeded': claim.candidates_needed,
        'applicantsCount': view.stats.applicants_count,
        'skillsVerifiedCount': view.stats.skills_verified_count,
        'tierBreakdown': view.stats.tier_breakdown,
    })
    return payload


def _slot_payload(slot):
    return {
        'id': slot.id,
        'startTime': isoformat(slot.start_time),
        'endTime': isoformat(slot.end_time),
        'selected': slot.selected,
        'confirmed': slot.confirmed,
    }


def _interview_payload(proposal):
    confirmed = proposal.confirmed_slot
    return {
        'id': proposal.id,
        'status': proposal.status.value,
        'applicationId': proposal.application_id,
        'introductionId': proposal.introduction_id,
        'employer': {'id': proposal.employer.id, 'companyName': proposal.employer.company_name},
        'candidate': {'id': proposal.candidate.id, 'name': proposal.candidate.name},
        'proposedSlots': [_slot_payload(slot) for slot in proposal.slots],
        'selectedSlots': [_slot_payload(slot) for slot in proposal.selected_slots],
        'confirmedSlot': _slot_payload(confirmed) if confirmed else None,
        'scheduledAt': isoformat(confirmed.start_time) if confirmed else None,
        'type': proposal.interview_type,
        'duration': proposal.duration_minutes,
        'meetingPlatform': proposal.meeting_platform,
        'interviewerId': proposal.interviewer_id,
        'notes': proposal.notes,
        'cancelReason': proposal.cancel_reason,
        'feedback': proposal.feedback,
        'rescheduleReason': proposal.reschedule_reason,
        'rescheduleRequest': {
            'reason': proposal.reschedule_request_reason,
            'requestedAt': isoformat(proposal.reschedule_requested_at),
        } if proposal.reschedule_requested_at else None,
        'createdAt': isoformat(proposal.created_at),
        'updatedAt': isoformat(proposal.updated_at),
    }


def _status_filter(args):
    """``?status=A,B`` or ``?status=A&status=B``; returns (statuses, bad_value)"""
    statuses = []
    for raw in args.getlist('status'):
        for value in raw.split(','):
            value = value.strip()
            if not value or value == 'all':
                continue
            status = _parse_enum(InterviewStatus, value)
            if status is None:
                return None, value
            statuses.append(status)
    return statuses, None


def register_routes(app):

    # ---------- errors ----------

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({
            'success': False,
            'code': e.name.upper().replace(' ', '_'),
            'error': e.description,
        }), e.code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        logger.error("Database error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return jsonify({
            'success': False,
            'code': 'INTERNAL_ERROR',
            'error': 'The service is temporarily unavailable, please retry',
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.error("Unhandled error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return jsonify({
            'success': False,
            'code': 'INTERNAL_ERROR',
            'error': 'Internal Server Error',
        }), 500

    @app.route('/api/health', methods=['GET'])
    def api_health():
        """Simple health check"""
        return jsonify({'success': True, 'status': 'ok'})

    # ---------- candidate response links (no login, token is the capability) ----------

    @app.route('/api/introductions/respond/<token>', methods=['GET'])
    def api_resolve_introduction_token(token):
        result = _engine('introductions').tokens.resolve(token)
        if not result.ok:
            return _failure(result)
        introduction = result.value
        return jsonify({
            'success': True,
            'introduction': _respond_snapshot(introduction),
            'candidateName': introduction.candidate.name,
        })

    @app.route('/api/introductions/respond/<token>', methods=['POST'])
    def api_respond_to_introduction(token):
        data = _json_body()
        response = _parse_enum(CandidateResponse, data.get('response'))
        if response is None:
            return _error(ErrorCode.VALIDATION_ERROR, 'response must be ACCEPTED, DECLINED or QUESTIONS')

        message, invalid = _text_field(data, 'message')
        if invalid:
            return invalid
        result = _engine('introductions').respond(token, response, message)
        if not result.ok:
            return _failure(result)

        messages = {
            CandidateResponse.ACCEPTED: "Thanks! We'll share your details with the employer.",
            CandidateResponse.DECLINED: "Thanks for letting us know.",
            CandidateResponse.QUESTIONS: "Thanks! Our team will get back to you with answers.",
        }
        return jsonify({
            'success': True,
            'message': messages[response],
            'response': response.value,
            'status': result.value.status.value,
        })

    # ---------- employer: introductions ----------

    @app.route('/api/employer/candidates/<int:candidate_id>/view', methods=['POST'])
    @role_required(UserRole.EMPLOYER)
    def api_view_candidate(candidate_id):
        try:
            job_id = parse_int(_json_body().get('jobId'))
        except (TypeError, ValueError):
            return _error(ErrorCode.VALIDATION_ERROR, 'jobId must be numeric')
        result = _engine('introductions').record_profile_view(_actor(), candidate_id, job_id)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'introduction': _introduction_payload(result.value)})

    @app.route('/api/employer/candidates/<int:candidate_id>/resume-download', methods=['POST'])
    @role_required(UserRole.EMPLOYER)
    def api_download_candidate_resume(candidate_id):
        try:
            job_id = parse_int(_json_body().get('jobId'))
        except (TypeError, ValueError):
            return _error(ErrorCode.VALIDATION_ERROR, 'jobId must be numeric')
        result = _engine('introductions').record_resume_download(_actor(), candidate_id, job_id)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'introduction': _introduction_payload(result.value)})

    @app.route('/api/employer/introductions', methods=['GET'])
    @role_required(UserRole.EMPLOYER)
    def api_employer_introductions():
        page, limit = get_pagination(request.args)
        status = None
        if request.args.get('status') and request.args['status'] != 'all':
            status = _parse_enum(IntroductionStatus, request.args['status'])
            if status is None:
                return _error(ErrorCode.VALIDATION_ERROR, f"Unknown status: {request.args['status']}")

        employer, missing = _employer_profile()
        if missing:
            return missing
        introductions = _engine('introductions').search(
            status=status, employer_id=employer.id, page=page, per_page=limit)
        return jsonify({
            'success': True,
            'introductions': [_introduction_payload(i) for i in introductions.items],
            'pagination': pagination_payload(page, limit, introductions.total),
        })

    @app.route('/api/employer/introductions/<int:introduction_id>/request', methods=['POST'])
    @role_required(UserRole.EMPLOYER)
    def api_request_introduction(introduction_id):
        result = _engine('introductions').request_introduction(_actor(), introduction_id)
        if not result.ok:
            return _failure(result)
        return jsonify({
            'success': True,
            'message': 'Introduction requested. The candidate has been emailed.',
            'introduction': _introduction_payload(result.value),
        })

    @app.route('/api/employer/introductions/<int:introduction_id>/advance', methods=['POST'])
    @role_required(UserRole.EMPLOYER, UserRole.ADMIN)
    def api_advance_introduction(introduction_id):
        status = _parse_enum(IntroductionStatus, _json_body().get('status'))
        if status is None:
            return _error(ErrorCode.VALIDATION_ERROR, 'A valid status is required')
        result = _engine('introductions').advance(_actor(), introduction_id, status)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'introduction': _introduction_payload(result.value)})

    # ---------- employer: claims ----------

    @app.route('/api/employer/claim/search', methods=['GET'])
    @role_required(UserRole.EMPLOYER)
    def api_search_unclaimed_jobs():
        query = request.args.get('q', '')
        page, limit = get_pagination(request.args)
        result = _engine('claims').search_unclaimed(query, page=page, per_page=limit)
        if not result.ok:
            return _failure(result)

        jobs = result.value
        stats = applicant_stats([job.id for job in jobs.items])
        jobs_data = []
        for job in jobs.items:
            payload = _job_payload(job)
            payload.update({
                'applicantsCount': stats[job.id].applicants_count,
                'skillsVerifiedCount': stats[job.id].skills_verified_count,
                'tierBreakdown': stats[job.id].tier_breakdown,
            })
            jobs_data.append(payload)

        return jsonify({
            'success': True,
            'jobs': jobs_data,
            'searchQuery': query,
            'pagination': pagination_payload(page, limit, jobs.total),
            'message': f'Found {jobs.total} unclaimed jobs' if jobs.total else 'No unclaimed jobs found',
        })

    @app.route('/api/employer/jobs/<int:job_id>/claim', methods=['POST'])
    @role_required(UserRole.EMPLOYER)
    def api_claim_job(job_id):
        result = _engine('claims').claim(_actor(), job_id, _json_body())
        if not result.ok:
            return _failure(result)

        claimed = result.value
        stats = applicant_stats([claimed.job_id])[claimed.job_id]
        return jsonify({
            'success': True,
            'message': f'You now manage "{claimed.job.title}". Qualified candidates are on their way.',
            'job': _job_payload(claimed.job),
            'claimMetadata': {
                'claimedAt': isoformat(claimed.claimed_at),
                'roleLevel': claimed.role_level.value,
                'salaryMin': claimed.salary_min,
                'salaryMax': claimed.salary_max,
                'startDateNeeded': isoformat(claimed.start_date_needed),
                'candidatesNeeded': claimed.candidates_needed,
            },
            'stats': {
                'totalApplicants': stats.applicants_count,
                'skillsVerifiedApplicants': stats.skills_verified_count,
            },
            'nextSteps': [
                'Review the applicants who already applied',
                'Browse skills-verified candidates',
                'Request introductions to the candidates you like',
            ],
        })

    @app.route('/api/employers/claimed-jobs', methods=['GET'])
    @role_required(UserRole.EMPLOYER)
    def api_claimed_jobs():
        employer, missing = _employer_profile()
        if missing:
            return missing
        views = _engine('claims').list_claimed(employer.id)
        return jsonify({
            'success': True,
            'claimedJobs': [_claimed_job_payload(view) for view in views],
            'totalClaimed': len(views),
            'totalApplicants': sum(view.stats.applicants_count for view in views),
            'totalSkillsVerified': sum(view.stats.skills_verified_count for view in views),
        })

    # ---------- interviews ----------

    @app.route('/api/interviews/availability', methods=['POST'])
    @role_required(UserRole.EMPLOYER)
    def api_propose_interview_slots():
        data = _json_body()
        try:
            application_id = parse_int(data.get('applicationId'))
            introduction_id = parse_int(data.get('introductionId'))
            duration = parse_int(data.get('duration'))
        except (TypeError, ValueError):
            return _error(ErrorCode.VALIDATION_ERROR, 'applicationId, introductionId and duration must be numeric')
        interview_type = data.get('type')
        if interview_type is not None and interview_type not in INTERVIEW_TYPES:
            return _error(ErrorCode.VALIDATION_ERROR, f"type must be one of {', '.join(INTERVIEW_TYPES)}")

        raw_slots = data.get('availabilitySlots', data.get('slots'))
        result = _engine('interviews').propose_slots(
            _actor(), raw_slots, application_id=application_id, introduction_id=introduction_id,
            interview_type=interview_type, duration_minutes=duration)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'interview': _interview_payload(result.value)}), 201

    @app.route('/api/interviews', methods=['GET'])
    @login_required
    def api_interviews():
        statuses, bad_value = _status_filter(request.args)
        if bad_value is not None:
            return _error(ErrorCode.VALIDATION_ERROR, f'Unknown status: {bad_value}')
        try:
            application_id = parse_int(request.args.get('applicationId'))
        except (TypeError, ValueError):
            return _error(ErrorCode.VALIDATION_ERROR, 'applicationId must be numeric')
        interviews = _engine('interviews').list_for(_actor(), status=statuses, application_id=application_id)
        return jsonify({
            'success': True,
            'interviews': [_interview_payload(p) for p in interviews],
            'count': len(interviews),
        })

    @app.route('/api/interviews/<int:interview_id>', methods=['GET'])
    @login_required
    def api_interview_detail(interview_id):
        result = _engine('interviews').get(_actor(), interview_id)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'interview': _interview_payload(result.value)})

    @app.route('/api/interviews/<int:interview_id>/select-slots', methods=['POST'])
    @role_required(UserRole.CANDIDATE, UserRole.ADMIN)
    def api_select_interview_slots(interview_id):
        raw_ids = _json_body().get('slotIds')
        try:
            slot_ids = [int(slot_id) for slot_id in raw_ids or []]
        except (TypeError, ValueError):
            return _error(ErrorCode.VALIDATION_ERROR, 'slotIds must be a list of slot ids')

        result = _engine('interviews').select_slots(_actor(), interview_id, slot_ids)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'interview': _interview_payload(result.value)})

    @app.route('/api/interviews/<int:interview_id>/confirm', methods=['POST'])
    @role_required(UserRole.EMPLOYER, UserRole.ADMIN)
    def api_confirm_interview(interview_id):
        data = _json_body()
        try:
            slot_id = parse_int(data.get('slotId'))
            interviewer_id = parse_int(data.get('interviewerId'))
        except (TypeError, ValueError):
            return _error(ErrorCode.VALIDATION_ERROR, 'slotId must be a slot id')
        if slot_id is None:
            return _error(ErrorCode.VALIDATION_ERROR, 'slotId is required')

        result = _engine('interviews').confirm_slot(
            _actor(), interview_id, slot_id,
            meeting_platform=data.get('meetingPlatform'), interviewer_id=interviewer_id)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'interview': _interview_payload(result.value)})

    @app.route('/api/interviews/<int:interview_id>', methods=['PATCH'])
    @login_required
    def api_update_interview(interview_id):
        data = _json_body()
        if not data:
            return _error(ErrorCode.VALIDATION_ERROR, 'No data provided')

        scheduler = _engine('interviews')
        result = None
        if 'notes' in data:
            notes, invalid = _text_field(data, 'notes')
            if invalid:
                return invalid
            result = scheduler.update_notes(_actor(), interview_id, notes)
            if not result.ok:
                return _failure(result)

        if 'feedback' in data:
            result = scheduler.record_feedback(_actor(), interview_id, data['feedback'])
            if not result.ok:
                return _failure(result)

        if 'status' in data:
            status = _parse_enum(InterviewStatus, data['status'])
            if status == InterviewStatus.COMPLETED:
                result = scheduler.mark_completed(_actor(), interview_id)
            elif status == InterviewStatus.CANCELLED:
                reason, invalid = _text_field(data, 'reason')
                if invalid:
                    return invalid
                result = scheduler.cancel(_actor(), interview_id, reason)
            else:
                return _error(ErrorCode.VALIDATION_ERROR, 'status can only be set to COMPLETED or CANCELLED')
            if not result.ok:
                return _failure(result)

        if result is None:
            return _error(ErrorCode.VALIDATION_ERROR, 'Nothing to update')
        return jsonify({'success': True, 'interview': _interview_payload(result.value)})

    @app.route('/api/interviews/<int:interview_id>', methods=['DELETE'])
    @login_required
    def api_cancel_interview(interview_id):
        reason, invalid = _text_field(_json_body(), 'reason')
        if invalid:
            return invalid
        result = _engine('interviews').cancel(_actor(), interview_id, reason)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'interview': _interview_payload(result.value)})

    @app.route('/api/interviews/<int:interview_id>/reschedule', methods=['POST'])
    @role_required(UserRole.EMPLOYER, UserRole.ADMIN)
    def api_reschedule_interview(interview_id):
        reason, invalid = _text_field(_json_body(), 'reason')
        if invalid:
            return invalid
        result = _engine('interviews').reschedule(_actor(), interview_id, reason)
        if not result.ok:
            return _failure(result)
        proposal = result.value
        return jsonify({
            'success': True,
            'interview': _interview_payload(proposal),
            'applicationId': proposal.application_id,
            'introductionId': proposal.introduction_id,
        })

    @app.route('/api/interviews/<int:interview_id>/request-reschedule', methods=['POST'])
    @role_required(UserRole.CANDIDATE)
    def api_request_interview_reschedule(interview_id):
        result = _engine('interviews').request_reschedule(_actor(), interview_id, _json_body().get('reason'))
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'interview': _interview_payload(result.value)})

    # ---------- admin: introductions ----------

    def _admin_list(status, search=None):
        page, limit = get_pagination(request.args)
        introductions = _engine('introductions').search(status=status, search=search, page=page, per_page=limit)
        return jsonify({
            'success': True,
            'introductions': [_introduction_payload(i) for i in introductions.items],
            'pagination': pagination_payload(page, limit, introductions.total),
        })

    @app.route('/api/admin/introductions', methods=['GET'])
    @role_required(UserRole.ADMIN)
    def api_admin_introductions():
        status = None
        status_filter = request.args.get('status', '')
        if status_filter and status_filter != 'all':
            status = _parse_enum(IntroductionStatus, status_filter)
            if status is None:
                return _error(ErrorCode.VALIDATION_ERROR, f'Unknown status: {status_filter}')
        return _admin_list(status, request.args.get('search', '').strip())

    @app.route('/api/admin/introductions/expired', methods=['GET'])
    @role_required(UserRole.ADMIN)
    def api_admin_expired_introductions():
        return _admin_list(IntroductionStatus.EXPIRED)

    @app.route('/api/admin/introductions/stats', methods=['GET'])
    @role_required(UserRole.ADMIN)
    def api_admin_introduction_stats():
        return jsonify({'success': True, 'stats': _engine('introductions').stats()})

    @app.route('/api/admin/introductions/<int:introduction_id>', methods=['GET'])
    @role_required(UserRole.ADMIN)
    def api_admin_introduction_detail(introduction_id):
        introduction = db.session.get(Introduction, introduction_id)
        if introduction is None:
            return _error(ErrorCode.NOT_FOUND, 'Introduction not found')
        return jsonify({'success': True, 'introduction': _introduction_payload(introduction, detail=True)})

    @app.route('/api/admin/introductions/<int:introduction_id>', methods=['PATCH'])
    @role_required(UserRole.ADMIN)
    def api_admin_update_introduction(introduction_id):
        data = _json_body()
        engine = _engine('introductions')
        note, invalid = _text_field(data, 'note')
        if invalid:
            return invalid

        if data.get('resetToRequested'):
            result = engine.reset_to_requested(_actor(), introduction_id, note=note)
        elif data.get('status'):
            status = _parse_enum(IntroductionStatus, data['status'])
            if status is None:
                return _error(ErrorCode.VALIDATION_ERROR, f"Unknown status: {data['status']}")
            result = engine.set_status(_actor(), introduction_id, status, note=note)
        elif note:
            result = engine.add_note(_actor(), introduction_id, note)
        else:
            return _error(ErrorCode.VALIDATION_ERROR, 'Provide status, note or resetToRequested')

        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'introduction': _introduction_payload(result.value, detail=True)})

    @app.route('/api/admin/introductions/<int:introduction_id>/close', methods=['POST'])
    @role_required(UserRole.ADMIN)
    def api_admin_close_introduction(introduction_id):
        note, invalid = _text_field(_json_body(), 'note')
        if invalid:
            return invalid
        result = _engine('introductions').close(_actor(), introduction_id, note=note)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'introduction': _introduction_payload(result.value, detail=True)})

    @app.route('/api/admin/introductions/<int:introduction_id>/resend-email', methods=['POST'])
    @role_required(UserRole.ADMIN)
    def api_admin_resend_introduction_email(introduction_id):
        result = _engine('introductions').resend_email(_actor(), introduction_id)
        if not result.ok:
            return _failure(result)
        introduction, regenerated = result.value
        return jsonify({
            'success': True,
            'message': 'Introduction email re-sent',
            'tokenRegenerated': regenerated,
            'introduction': _introduction_payload(introduction, detail=True),
        })

    @app.route('/api/admin/introductions/<int:introduction_id>/manual-response', methods=['POST'])
    @role_required(UserRole.ADMIN)
    def api_admin_manual_response(introduction_id):
        data = _json_body()
        responses = {'ACCEPT': CandidateResponse.ACCEPTED, 'DECLINE': CandidateResponse.DECLINED}
        raw_response = data.get('response')
        response = responses.get(raw_response) if isinstance(raw_response, str) else None
        if response is None:
            return _error(ErrorCode.VALIDATION_ERROR, 'response must be ACCEPT or DECLINE')
        note, invalid = _text_field(data, 'note')
        if invalid:
            return invalid

        result = _engine('introductions').manual_response(_actor(), introduction_id, response, note=note)
        if not result.ok:
            return _failure(result)
        return jsonify({'success': True, 'introduction': _introduction_payload(result.value, detail=True)})
