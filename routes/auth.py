from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User
from security.attempt_store import StorageUnavailable
from security.csrf import issue_csrf_token
from security.password import check_credentials
from security.session import (
    create_session, set_session_cookie, clear_session_cookie,
    revoke_current_session, revoke_all_sessions,
)
from security.status_service import get_status_service
from utils.audit import log_event
from utils.auth_context import login_required
from utils.emailer import send_lockout_alert
from utils.identity import is_valid_email, normalize_email
from utils.request_info import client_ip, client_user_agent
from utils.timeutil import isoformat_utc, utcnow


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _storage_fault(email: str, stage: str):
    current_app.logger.error("Attempt store unavailable during %s for %s, denying login", stage, email)
    log_event("LOGIN_STORAGE_FAULT", metadata={"email": email, "stage": stage})
    return jsonify(error="Unable to verify account safety. Try again later."), 503


def _locked_response(state, now):
    return jsonify(
        error="Account temporarily locked. Try again later.",
        lockoutEndsAt=isoformat_utc(state.lockout_ends_at),
        retry_after_seconds=state.seconds_until_unlock(now),
    ), 429


@auth_bp.post("/security-status")
def security_status():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    service = get_status_service()
    try:
        state = service.get_status(data.get("email"))
    except StorageUnavailable:
        current_app.logger.error("Attempt store unavailable, returning fail-closed security status")
        state = service.fail_closed_status()
    return jsonify(success=True, data=state.to_dict()), 200


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    email = normalize_email(data.get("email") if isinstance(data.get("email"), str) else "")
    password = data.get("password") or ""
    captcha_verified = data.get("captchaVerified") is True

    if not is_valid_email(email):
        log_event("LOGIN_FAIL", metadata={"reason": "malformed_email"})
        return jsonify(error="Invalid credentials"), 401

    service = get_status_service()
    try:
        status = service.get_status(email)
    except StorageUnavailable:
        return _storage_fault(email, "status")

    if status.is_locked:
        # no credential check and no new record while locked
        log_event("LOGIN_LOCKED", metadata={"email": email, "lockout_ends_at": isoformat_utc(status.lockout_ends_at)})
        return _locked_response(status, service.clock())

    if status.requires_captcha and not captcha_verified:
        log_event("LOGIN_CAPTCHA_REQUIRED", metadata={"email": email})
        return jsonify(error="CAPTCHA verification required", captcha_required=True), 400

    ip = client_ip()
    user_agent = client_user_agent()
    user = User.query.filter_by(email=email).first()

    if not check_credentials(user, password):
        try:
            after = service.record_failure(email, ip=ip, user_agent=user_agent)
        except StorageUnavailable:
            return _storage_fault(email, "record_failure")

        log_event(
            "LOGIN_FAIL",
            user_id=user.id if user else None,
            metadata={"email": email, "failed_in_window": after.failed_attempts_in_window, "locked_now": after.is_locked},
        )
        if after.is_locked:
            log_event(
                "ACCOUNT_LOCKED",
                user_id=user.id if user else None,
                entity="user",
                entity_id=user.id if user else None,
                metadata={"email": email, "lockout_ends_at": isoformat_utc(after.lockout_ends_at)},
            )
            current_app.logger.warning("Account %s locked until %s", email, isoformat_utc(after.lockout_ends_at))
            if user:
                send_lockout_alert(user, ip, after.lockout_ends_at)
            return _locked_response(after, service.clock())

        body = {"error": "Invalid credentials", "requiresCaptcha": after.requires_captcha}
        if after.show_attempts_warning:
            body["attemptsRemaining"] = after.attempts_remaining
        return jsonify(body), 401

    try:
        service.record_success(email, ip=ip, user_agent=user_agent)
    except StorageUnavailable:
        return _storage_fault(email, "record_success")

    user.last_login_at = utcnow()
    user.last_login_ip = ip
    db.session.commit()

    # Rotate: revoke any existing sessions for this user
    revoked_count = revoke_all_sessions(user.id)
    raw_token = create_session(user.id)

    resp = jsonify(message="Login OK")
    set_session_cookie(resp, raw_token)
    issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked_count})
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        roles=sorted(r.name for r in g.user.roles),
        last_login_at=isoformat_utc(g.user.last_login_at),
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_current_session()
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    clear_session_cookie(resp)
    return resp, 200
