"""
State-transition signals.

Engines send these after a transition has been committed; receivers (email
notifications, tests) only observe and never mutate engine state.
"""
from blinker import Namespace

_signals = Namespace()

# sender: Introduction
introduction_requested = _signals.signal('introduction-requested')  # token=ResponseToken
candidate_responded = _signals.signal('candidate-responded')  # response=CandidateResponse
introduction_status_changed = _signals.signal('introduction-status-changed')  # from_status, to_status, actor

# sender: ClaimedJob
job_claimed = _signals.signal('job-claimed')

# sender: InterviewProposal
interview_slots_proposed = _signals.signal('interview-slots-proposed')
interview_slots_selected = _signals.signal('interview-slots-selected')
interview_scheduled = _signals.signal('interview-scheduled')
interview_cancelled = _signals.signal('interview-cancelled')
interview_rescheduled = _signals.signal('interview-rescheduled')  # reason
interview_reschedule_requested = _signals.signal('interview-reschedule-requested')  # reason
