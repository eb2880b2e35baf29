"""
Response tokens: single-use, time-boxed capabilities that let a candidate
answer an introduction request from an emailed link without logging in.
"""
import logging
import secrets
from datetime import timedelta

from database import db, compare_and_set
from models import ResponseToken, IntroductionStatus
from results import Result, ErrorCode
from utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7


class TokenService:
    def __init__(self, ttl_days=DEFAULT_TTL_DAYS, lifecycle=None):
        self.ttl = timedelta(days=ttl_days)
        # IntroductionEngine; applies the status change of a consumed token
        self.lifecycle = lifecycle

    def issue(self, introduction, now=None):
        """Mint a fresh token bound to ``introduction``.

        The row is added to the session but not committed; the caller commits
        it together with the transition that needed it.
        """
        now = now or utcnow()
        token = ResponseToken(
            token=secrets.token_urlsafe(32),
            introduction_id=introduction.id,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        db.session.add(token)
        db.session.flush()
        logger.info("Issued response token for introduction %s (expires %s)",
                    introduction.id, token.expires_at.isoformat())
        return token

    def is_expired(self, token, now=None):
        # Valid on [issued_at, expires_at)
        now = now or utcnow()
        return token.consumed_at is None and now >= token.expires_at

    def resolve(self, token_value, now=None):
        """Classify a token string.

        Checked in order: unknown, expired, already used, pending. A pending
        result carries the Introduction as its value.
        """
        now = now or utcnow()
        token = ResponseToken.query.filter_by(token=token_value).first() if token_value else None

        if token is None:
            return Result.failure(ErrorCode.INVALID_TOKEN, 'This link is invalid')

        if self.is_expired(token, now):
            return Result.failure(ErrorCode.TOKEN_EXPIRED, 'This link has expired')

        if token.consumed_at is not None:
            return Result.failure(
                ErrorCode.ALREADY_RESPONDED,
                'You have already responded to this introduction',
                response=token.response.value if token.response else None,
            )

        introduction = token.introduction
        if introduction.status != IntroductionStatus.INTRO_REQUESTED or introduction.current_token is not token:
            # A request that is no longer open reads as an expired link, not INVALID_TRANSITION
            return Result.failure(ErrorCode.TOKEN_EXPIRED, 'This introduction request is no longer active')

        return Result.success(introduction)

    def consume(self, token_value, response, message=None, now=None, actor=None):
        """Record the candidate's answer; exactly one caller per token wins.

        Re-validates like ``resolve``, then marks the token used with a
        conditional update. A caller that loses the race gets
        ALREADY_RESPONDED with the winner's answer.
        """
        now = now or utcnow()
        resolved = self.resolve(token_value, now)
        if not resolved.ok:
            return resolved

        token = ResponseToken.query.filter_by(token=token_value).first()
        introduction = resolved.value

        won = compare_and_set(
            ResponseToken,
            [ResponseToken.id == token.id, ResponseToken.consumed_at.is_(None)],
            {'consumed_at': now, 'response': response},
        )
        if not won:
            db.session.rollback()
            logger.info("Token for introduction %s was consumed concurrently", introduction.id)
            return self.resolve(token_value, now)

        applied = self.lifecycle.apply_candidate_response(introduction, response, message, now, actor=actor)
        if not applied.ok:
            db.session.rollback()
            return applied

        db.session.commit()
        self.lifecycle.after_candidate_response(introduction, response, actor)
        return Result.success(introduction)
