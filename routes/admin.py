from flask import Blueprint, jsonify, g, current_app

from security.attempt_store import StorageUnavailable
from security.status_service import get_status_service
from utils.audit import log_event
from utils.auth_context import require_roles
from utils.identity import InvalidIdentity, identity_key
from utils.request_info import client_ip, client_user_agent
from utils.timeutil import isoformat_utc

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _storage_error():
    current_app.logger.error("Attempt store unavailable for admin lockout request")
    return jsonify(error="Login attempt storage unavailable"), 503


@admin_bp.get("/lockouts/stats")
@require_roles("ADMIN")
def lockout_stats():
    try:
        stats = get_status_service().stats()
    except StorageUnavailable:
        return _storage_error()
    return jsonify(stats), 200


@admin_bp.get("/lockouts/<email>")
@require_roles("ADMIN")
def lockout_detail(email: str):
    try:
        key = identity_key(email)
    except InvalidIdentity:
        return jsonify(error="Invalid email"), 400

    service = get_status_service()
    try:
        state = service.get_status(key)
        attempts = service.recent_attempts(key)
    except StorageUnavailable:
        return _storage_error()

    return jsonify(
        email=key,
        status=state.to_dict(),
        failed_attempts_in_window=state.failed_attempts_in_window,
        attempts=[
            {
                "outcome": a.outcome.value,
                "timestamp": isoformat_utc(a.timestamp),
                "ip": a.ip_address,
                "user_agent": a.user_agent,
            }
            for a in reversed(attempts)
        ],
    ), 200


@admin_bp.post("/lockouts/<email>/unlock")
@require_roles("ADMIN")
def unlock(email: str):
    try:
        key = identity_key(email)
    except InvalidIdentity:
        return jsonify(error="Invalid email"), 400

    service = get_status_service()
    try:
        was_locked = service.get_status(key).is_locked
        state = service.reset(key, ip=client_ip(), user_agent=client_user_agent())
    except StorageUnavailable:
        return _storage_error()

    log_event(
        "ACCOUNT_UNLOCKED",
        user_id=g.user.id,
        entity="login_attempt",
        entity_id=key,
        metadata={"target_email": key, "was_locked": was_locked, "reason": "Manual unlock by admin"},
    )
    current_app.logger.info("Admin %s reset lockout state for %s", g.user.email, key)
    return jsonify(message="Account unlocked", email=key, was_locked=was_locked, status=state.to_dict()), 200
