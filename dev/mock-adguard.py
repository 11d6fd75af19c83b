#!/usr/bin/env python3
"""Mock AdGuard Home control API for local development.

Accepts any non-empty login, hands out a session cookie, and keeps the blocked-services
configuration in memory. Point ADGUARD_BASE_URL at http://localhost:18480.
"""

import secrets
import sys

from flask import Flask, jsonify, request

app = Flask(__name__)

SESSION_COOKIE = "agh_session"
_sessions = set()
_config = {"ids": ["tiktok", "youtube"], "schedule": {"time_zone": "America/Chicago"}}
_catalogue = [
    {"id": "tiktok", "name": "TikTok", "icon_svg": "", "rules": ["||tiktok.com^"]},
    {"id": "youtube", "name": "YouTube", "icon_svg": "", "rules": ["||youtube.com^"]},
    {"id": "twitch", "name": "Twitch", "icon_svg": "", "rules": ["||twitch.tv^"]},
]


def _authorized() -> bool:
    return request.cookies.get(SESSION_COOKIE) in _sessions


@app.route("/control/login", methods=["POST"])
def login():
    body = request.get_json(silent=True) or {}
    if not body.get("name") or not body.get("password"):
        return "invalid username or password", 403
    token = secrets.token_hex(16)
    _sessions.add(token)
    resp = app.make_response("OK")
    resp.set_cookie(SESSION_COOKIE, token, httponly=True)
    return resp


@app.route("/control/blocked_services/get", methods=["GET"])
def get_blocked():
    if not _authorized():
        return "Unauthorized", 401
    return jsonify(_config)


@app.route("/control/blocked_services/all", methods=["GET"])
def all_services():
    if not _authorized():
        return "Unauthorized", 401
    return jsonify({"blocked_services": _catalogue, "groups": []})


@app.route("/control/blocked_services/update", methods=["PUT"])
def update_blocked():
    if not _authorized():
        return "Unauthorized", 401
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return "bad request", 400
    _config.update(body)
    return "OK"


@app.route("/control/logout", methods=["GET", "POST"])
def logout():
    """Drop every session, to exercise re-authentication."""
    _sessions.clear()
    return "OK"


if __name__ == "__main__":
    print("Mock AdGuard Home starting on http://0.0.0.0:18480", file=sys.stderr)
    app.run(host="0.0.0.0", port=18480, debug=False)
