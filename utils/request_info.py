from flask import request


def client_ip() -> str:
    ip = request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"
    return ip[:64]


def client_user_agent():
    user_agent = request.headers.get("User-Agent", "")
    return user_agent[:255] if user_agent else None
