import threading
from datetime import timedelta

from conftest import T0
from database import db
from introductions import RESPONSE_OUTCOMES
from models import CandidateResponse, Introduction, IntroductionStatus, ResponseToken
from results import ErrorCode


def test_issue_binds_a_fresh_token_to_the_introduction(requested):
    introduction = requested()
    token = introduction.current_token

    assert len(token.token) >= 32
    assert token.introduction_id == introduction.id
    assert token.issued_at == T0
    assert token.expires_at == T0 + timedelta(days=7)
    assert token.consumed_at is None


def test_tokens_are_unique(engine, requested):
    introduction = requested()
    second = engine.tokens.issue(introduction, T0)
    db.session.commit()

    assert second.token != introduction.tokens[0].token


def test_resolve_pending_token_returns_introduction(engine, requested):
    introduction = requested()

    result = engine.tokens.resolve(introduction.current_token.token, now=T0 + timedelta(days=1))

    assert result.ok
    assert result.value.id == introduction.id


def test_unknown_token_is_invalid(engine, requested):
    requested()

    assert engine.tokens.resolve('not-a-real-token', now=T0).code == ErrorCode.INVALID_TOKEN
    assert engine.tokens.resolve('', now=T0).code == ErrorCode.INVALID_TOKEN
    assert engine.tokens.resolve(None, now=T0).code == ErrorCode.INVALID_TOKEN


def test_token_valid_until_one_second_before_expiry(engine, requested):
    token = requested().current_token

    result = engine.tokens.resolve(token.token, now=token.expires_at - timedelta(seconds=1))

    assert result.ok


def test_token_expired_at_exact_expiry_instant(engine, requested):
    token = requested().current_token

    result = engine.tokens.resolve(token.token, now=token.expires_at)

    assert not result.ok
    assert result.code == ErrorCode.TOKEN_EXPIRED


def test_token_expired_one_second_after_expiry(engine, requested):
    token = requested().current_token

    result = engine.tokens.resolve(token.token, now=token.expires_at + timedelta(seconds=1))

    assert result.code == ErrorCode.TOKEN_EXPIRED


def test_expired_token_cannot_be_consumed(engine, requested):
    introduction = requested()
    token = introduction.current_token

    result = engine.respond(token.token, CandidateResponse.ACCEPTED, now=token.expires_at)

    assert result.code == ErrorCode.TOKEN_EXPIRED
    db.session.expire_all()
    assert introduction.status == IntroductionStatus.INTRO_REQUESTED
    assert introduction.current_token.consumed_at is None


def test_token_is_single_use(engine, requested):
    token_value = requested().current_token.token

    first = engine.respond(token_value, CandidateResponse.ACCEPTED, now=T0 + timedelta(hours=1))
    second = engine.respond(token_value, CandidateResponse.DECLINED, now=T0 + timedelta(hours=2))

    assert first.ok
    assert second.code == ErrorCode.ALREADY_RESPONDED
    assert second.extra['response'] == 'ACCEPTED'
    assert first.value.status == IntroductionStatus.INTRODUCED


def test_consumed_token_reports_already_responded_after_expiry(engine, requested):
    token_value = requested().current_token.token
    engine.respond(token_value, CandidateResponse.DECLINED, now=T0 + timedelta(hours=1))

    result = engine.tokens.resolve(token_value, now=T0 + timedelta(days=30))

    assert result.code == ErrorCode.ALREADY_RESPONDED
    assert result.extra['response'] == 'DECLINED'


def test_token_of_closed_introduction_is_no_longer_active(engine, requested, admin):
    introduction = requested()
    token_value = introduction.current_token.token
    assert engine.close(admin, introduction.id, now=T0 + timedelta(hours=1)).ok

    result = engine.tokens.resolve(token_value, now=T0 + timedelta(hours=2))

    assert result.code == ErrorCode.TOKEN_EXPIRED


def test_superseded_token_is_no_longer_active(engine, requested, admin):
    introduction = requested()
    old_value = introduction.current_token.token
    # An admin re-send after expiry mints a new link
    resent = engine.resend_email(admin, introduction.id, now=T0 + timedelta(days=8))
    assert resent.ok and resent.value[1] is True

    db.session.expire_all()
    assert introduction.current_token.token != old_value
    result = engine.tokens.resolve(old_value, now=T0 + timedelta(days=8))
    assert result.code == ErrorCode.TOKEN_EXPIRED


def test_consume_records_response_on_token(engine, requested):
    token_value = requested().current_token.token
    responded_at = T0 + timedelta(hours=3)

    engine.respond(token_value, CandidateResponse.ACCEPTED, now=responded_at)

    token = ResponseToken.query.filter_by(token=token_value).one()
    assert token.consumed_at == responded_at
    assert token.response == CandidateResponse.ACCEPTED


def test_concurrent_consume_has_single_winner(app, requested):
    introduction = requested()
    introduction_id = introduction.id
    token_value = introduction.current_token.token
    db.session.close()

    barrier = threading.Barrier(2)
    outcomes = {}

    def respond(response):
        with app.app_context():
            barrier.wait()
            result = app.extensions['introductions'].respond(token_value, response, now=T0 + timedelta(hours=1))
            outcomes[response] = (result.ok, result.code)

    threads = [threading.Thread(target=respond, args=(response,))
               for response in (CandidateResponse.ACCEPTED, CandidateResponse.DECLINED)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    winners = [response for response, (ok, _) in outcomes.items() if ok]
    losers = [code for ok, code in outcomes.values() if not ok]
    assert len(winners) == 1
    assert losers == [ErrorCode.ALREADY_RESPONDED]

    introduction = db.session.get(Introduction, introduction_id)
    assert introduction.status == RESPONSE_OUTCOMES[winners[0]]
    assert introduction.candidate_response == winners[0]
    assert introduction.current_token.response == winners[0]
