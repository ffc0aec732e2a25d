"""Insights Engine HTTP Handler.

Thin JSON adapter over InsightsEngine. Consent denials are a normal
outcome: clients get 200 with tracked=false, never an error.

Subjects are identified by an anonymous session hash, presented in the
body (session_id), the X-Session-Id header or the session cookie. A
missing or malformed token is replaced by a freshly derived one, which
is returned to the client. An authenticated account id may be passed as
user_id instead.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check (database connectivity)
- POST /session - Resolve or derive a session hash
- POST /events - Ingest one event
- POST /events/hashtags - Track hashtags typed into caption input
- GET|POST|DELETE /consent/<subject_id> - Read, set or withdraw consent
- GET /baseline - Community baseline
- GET /trends - Trending hashtags, platforms or tones
- GET /trends/monthly/<year>/<month> - Monthly trend report
- GET /trends/user/<subject_id> - Trends on the subject's platforms
- GET /benchmarks/<subject_id> - Subject benchmark report
- GET /benchmarks/<subject_id>/monthly/<year>/<month> - Month-over-month comparison
- DELETE /subjects/<subject_id>/data - Immediate erasure
- POST /retention/sweep - Run the retention sweep
- GET /compliance - Retention and minimization check
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from creatorpulse.shared.database import RepositoryError
from creatorpulse.shared.models import RejectionReason, TimeWindow, TrendDimension
from creatorpulse.shared.utils import SESSION_TTL, ClientSignals, is_valid_session_format

from ..analytics_service import AggregationIncomplete
from .engine import InsightsEngine

logger = logging.getLogger(__name__)

SERVICE_NAME = "insights-engine"
SESSION_COOKIE = "cp_session"
SESSION_HEADER = "X-Session-Id"


def _parse_timestamp(value: str) -> datetime:
    """ISO-8601 timestamp as naive UTC. Offsets are converted, 'Z' included."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _window_from_args(args, now: datetime) -> Optional[TimeWindow]:
    """Window from start/end ISO timestamps or a trailing days count.

    Raises:
        ValueError: If the values do not form a valid window
    """
    start, end = args.get("start"), args.get("end")
    if start or end:
        if not (start and end):
            raise ValueError("start and end must be given together")
        return TimeWindow(_parse_timestamp(start), _parse_timestamp(end))

    days = args.get("days")
    if days is None:
        return None
    days = int(days)
    if days <= 0:
        raise ValueError("days must be positive")
    return TimeWindow.trailing(days, now)


def _bad_request(message: str):
    return jsonify({"error": message}), 400


def _client_signals() -> ClientSignals:
    return ClientSignals(
        user_agent=request.user_agent.string or "",
        ip_address=request.remote_addr or "",
    )


def _with_session(response, session_id: Optional[str]):
    if session_id:
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=int(SESSION_TTL.total_seconds()),
            httponly=True,
            samesite="Lax",
        )
    return response


def create_app(engine: InsightsEngine) -> Flask:
    """Build the Flask app around an engine instance."""
    app = Flask(__name__)

    def resolve_subject(body: Dict[str, Any]) -> Tuple[str, Optional[str], bool]:
        """(subject key, session id to hand back, reused) for a request body."""
        user_id = body.get("user_id")
        if user_id:
            return engine.account_subject(str(user_id)), None, True

        presented = (
            body.get("session_id")
            or request.headers.get(SESSION_HEADER)
            or request.cookies.get(SESSION_COOKIE)
        )
        session, reused = engine.resolve_session(
            presented if isinstance(presented, str) else None, _client_signals()
        )
        if presented and not reused:
            logger.info("SESSION_REDERIVED", extra={"path": request.path})
        return session, session, reused

    def invalid_subject(subject_id: str):
        if is_valid_session_format(subject_id):
            return None
        return _bad_request("subject_id must be a 32-char session hash")

    @app.errorhandler(RepositoryError)
    def storage_unavailable(e):
        logger.error("STORAGE_UNAVAILABLE", extra={"path": request.path, "error": str(e)})
        return jsonify({"error": "storage unavailable"}), 503

    @app.errorhandler(AggregationIncomplete)
    def baseline_unavailable(e):
        logger.error("BASELINE_UNAVAILABLE", extra={"path": request.path, "error": str(e)})
        return jsonify({"error": "baseline unavailable"}), 503

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "healthy", "service": SERVICE_NAME})

    @app.route("/ready", methods=["GET"])
    def ready():
        status = engine.status()
        body = {"status": "ready" if status["ready"] else "not_ready", "service": SERVICE_NAME}
        body.update(status)
        return jsonify(body), 200 if status["ready"] else 503

    @app.route("/session", methods=["POST"])
    def session():
        """Resolve the presented session token, deriving a new one if needed."""
        body = request.get_json(silent=True)
        subject, session_id, reused = resolve_subject(body if isinstance(body, dict) else {})
        return _with_session(jsonify({"session_id": subject, "reused": reused}), session_id)

    @app.route("/events", methods=["POST"])
    def ingest():
        """Ingest one event.

        Body:
            event_type: Required - event type value
            purpose: Required - declared purpose
            payload: Optional - event fields
            session_id: Optional - session hash (header or cookie also accepted)
            user_id: Optional - authenticated account id
        """
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _bad_request("JSON object body is required")

        missing = [f for f in ("event_type", "purpose") if not body.get(f)]
        if missing:
            return _bad_request(f"missing fields: {', '.join(missing)}")

        payload = body.get("payload") or {}
        if not isinstance(payload, dict):
            return _bad_request("payload must be an object")

        subject, session_id, _ = resolve_subject(body)
        result = engine.ingest_event(body["event_type"], payload, body["purpose"], subject)

        data = result.to_dict()
        if session_id:
            data["session_id"] = session_id

        if result.accepted:
            status = 201
        elif result.rejection is RejectionReason.CONSENT_MISSING:
            status = 200
        else:
            status = 400
        return _with_session(jsonify(data), session_id), status

    @app.route("/events/hashtags", methods=["POST"])
    def ingest_hashtags():
        """Track hashtags typed into caption input. The text is not stored.

        Body:
            text: Required - caption or description as typed
            platform: Optional - target platform
            tone: Optional - tone
        """
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or not isinstance(body.get("text"), str):
            return _bad_request("text is required")

        subject, session_id, _ = resolve_subject(body)
        results = engine.ingest_caption_hashtags(
            body["text"], subject, platform=body.get("platform"), tone=body.get("tone"),
        )

        data = {
            "tracked": sum(1 for r in results if r.accepted),
            "results": [r.to_dict() for r in results],
        }
        if session_id:
            data["session_id"] = session_id
        return _with_session(jsonify(data), session_id)

    @app.route("/consent/<subject_id>", methods=["GET"])
    def get_consent(subject_id):
        error = invalid_subject(subject_id)
        if error:
            return error
        pending = engine.pending_erasure(subject_id)
        return jsonify({
            "consents": engine.get_consents(subject_id),
            "pending_erasure": pending.isoformat() if pending else None,
        })

    @app.route("/consent/<subject_id>", methods=["POST"])
    def set_consent(subject_id):
        """Set consent choices.

        Body:
            consents: Mapping of category to granted flag
        """
        error = invalid_subject(subject_id)
        if error:
            return error
        body = request.get_json(silent=True)
        choices = body.get("consents") if isinstance(body, dict) else None
        if not isinstance(choices, dict) or not choices:
            return _bad_request("consents mapping is required")

        try:
            records = engine.set_consents(subject_id, choices)
        except ValueError as e:
            return _bad_request(str(e))

        return jsonify({
            "consents": engine.get_consents(subject_id),
            "changed": [r.to_dict() for r in records],
        })

    @app.route("/consent/<subject_id>", methods=["DELETE"])
    def withdraw_consent(subject_id):
        """Withdraw one category (?category=) or everything."""
        error = invalid_subject(subject_id)
        if error:
            return error
        category = request.args.get("category")
        if category:
            try:
                engine.withdraw_consent(subject_id, category)
            except ValueError as e:
                return _bad_request(str(e))
            return jsonify({"consents": engine.get_consents(subject_id)})

        engine.withdraw_all(subject_id)
        pending = engine.pending_erasure(subject_id)
        return jsonify({
            "consents": engine.get_consents(subject_id),
            "pending_erasure": pending.isoformat() if pending else None,
        }), 202

    @app.route("/baseline", methods=["GET"])
    def baseline():
        try:
            window = _window_from_args(request.args, engine.now())
        except ValueError as e:
            return _bad_request(str(e))
        return jsonify(engine.get_baseline(window).to_dict())

    @app.route("/trends", methods=["GET"])
    def trends():
        """Trend entries.

        Query params:
            days or start/end: Current window (default trailing baseline window)
            top_n: Optional - Maximum entries, at least 1
            dimension: Optional - hashtag, platform or tone (default hashtag)
        """
        try:
            window = _window_from_args(request.args, engine.now())
            top_n = int(request.args["top_n"]) if "top_n" in request.args else None
            if top_n is not None and top_n < 1:
                return _bad_request("top_n must be at least 1")
            dimension = TrendDimension(request.args.get("dimension", "hashtag"))
            entries = engine.get_trends(window, top_n=top_n, dimension=dimension)
        except ValueError as e:
            return _bad_request(str(e))

        return jsonify({
            "dimension": dimension.value,
            "trends": [entry.to_dict() for entry in entries],
        })

    @app.route("/trends/monthly/<int:year>/<int:month>", methods=["GET"])
    def monthly_trends(year, month):
        if not 1 <= month <= 12:
            return _bad_request("month must be 1-12")
        return jsonify(engine.get_monthly_report(year, month))

    @app.route("/trends/user/<subject_id>", methods=["GET"])
    def user_trends(subject_id):
        """Trends on the subject's platforms. Query param days (default 7)."""
        error = invalid_subject(subject_id)
        if error:
            return error
        try:
            days = int(request.args.get("days", 7))
        except ValueError as e:
            return _bad_request(str(e))
        if days <= 0:
            return _bad_request("days must be positive")
        return jsonify(engine.get_user_trend_report(subject_id, days=days))

    @app.route("/benchmarks/<subject_id>", methods=["GET"])
    def benchmarks(subject_id):
        error = invalid_subject(subject_id)
        if error:
            return error
        try:
            window = _window_from_args(request.args, engine.now())
        except ValueError as e:
            return _bad_request(str(e))
        return jsonify(engine.get_benchmarks(subject_id, window).to_dict())

    @app.route("/benchmarks/<subject_id>/monthly/<int:year>/<int:month>", methods=["GET"])
    def monthly_benchmarks(subject_id, year, month):
        error = invalid_subject(subject_id)
        if error:
            return error
        if not 1 <= month <= 12:
            return _bad_request("month must be 1-12")
        return jsonify(engine.get_monthly_comparison(subject_id, year, month))

    @app.route("/subjects/<subject_id>/data", methods=["DELETE"])
    def delete_subject_data(subject_id):
        error = invalid_subject(subject_id)
        if error:
            return error
        deleted = engine.delete_subject_data(subject_id)
        return jsonify({"events_deleted": deleted})

    @app.route("/retention/sweep", methods=["POST"])
    def retention_sweep():
        force = request.args.get("force", "false").lower() in ("1", "true", "yes")
        counts = engine.run_retention_sweep(force=force)
        if not counts:
            return jsonify({"error": "retention sweep already running"}), 409
        return jsonify({"deleted": counts, "total": sum(counts.values())})

    @app.route("/compliance", methods=["GET"])
    def compliance():
        return jsonify(engine.compliance_report().to_dict())

    return app
