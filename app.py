from __future__ import annotations

import atexit
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request

from hearings_config import SchedulerConfig, load_scheduler_config
from services.cases import (
    CaseNotFoundError,
    CaseValidationError,
    create_case,
    fetch_all_cases,
    update_hearings,
)
from services.db import close_app_db, get_app_db
from services.scheduler import HearingScheduler, build_scheduler
from services.system_settings import (
    NotificationSettings,
    NotificationSettingsError,
    load_notification_settings,
    save_notification_settings,
)

SCHEDULER_EXTENSION = "hearing_scheduler"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _scheduler() -> HearingScheduler:
    return current_app.extensions[SCHEDULER_EXTENSION]


def create_app(
    config: Optional[SchedulerConfig] = None,
    *,
    scheduler: Optional[HearingScheduler] = None,
    start_scheduler: Optional[bool] = None,
) -> Flask:
    """Build the Flask application.

    The hearing scheduler only starts when ``start_scheduler`` is true (or,
    when left as ``None``, when ``HEARINGS_SCHEDULER_ENABLED`` is set).
    """
    config = config or load_scheduler_config()
    scheduler = scheduler or build_scheduler(config)

    app = Flask(__name__)
    app.config["HEARINGS_DB_PATH"] = str(config.database_path)
    app.extensions[SCHEDULER_EXTENSION] = scheduler
    app.teardown_appcontext(close_app_db)
    _register_routes(app)

    if start_scheduler is None:
        start_scheduler = _env_flag("HEARINGS_SCHEDULER_ENABLED")
    if start_scheduler:
        scheduler.start()
        atexit.register(scheduler.stop)
        app.logger.info("Court hearing scheduler started with the application")
    return app


def _register_routes(app: Flask) -> None:
    @app.get("/ping")
    def ping():
        return jsonify({"status": "ok", "scheduler_running": _scheduler().running})

    # ---- Notification settings ----------------------------------------
    @app.get("/api/notification-settings")
    def get_notification_settings():
        return jsonify(load_notification_settings(get_app_db()).to_json())

    @app.put("/api/notification-settings")
    def put_notification_settings():
        settings = NotificationSettings.from_json(_json_body())
        try:
            save_notification_settings(get_app_db(), settings)
        except NotificationSettingsError as exc:
            return jsonify({"error": str(exc)}), 400
        app.logger.info(
            "Email notifications %s (recipient=%s)",
            "enabled" if settings.enabled else "disabled",
            settings.recipient_email or "-",
        )
        return jsonify(settings.to_json())

    # ---- Cases --------------------------------------------------------
    @app.get("/api/cases")
    def list_cases():
        return jsonify([case.to_json() for case in fetch_all_cases(get_app_db())])

    @app.post("/api/cases")
    def add_case():
        data = _json_body()
        conn = get_app_db()
        try:
            case_id = create_case(
                conn,
                data.get("plaintiffName", ""),
                data.get("defendantName", ""),
                first_instance_hearing=data.get("firstInstanceHearing"),
                appeal_hearing=data.get("appealHearing"),
                third_party=data.get("thirdParty"),
                claim_subject=data.get("claimSubject"),
                first_instance_court=data.get("firstInstanceCourt"),
                appeal_court=data.get("appealCourt"),
            )
        except CaseValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"id": case_id}), 201

    @app.patch("/api/cases/<int:case_id>/hearings")
    def patch_case_hearings(case_id: int):
        data = _json_body()
        changes = {}
        if "firstInstanceHearing" in data:
            changes["first_instance_hearing"] = data["firstInstanceHearing"]
        if "appealHearing" in data:
            changes["appeal_hearing"] = data["appealHearing"]
        try:
            case = update_hearings(get_app_db(), case_id, **changes)
        except CaseNotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        return jsonify(case.to_json())

    # ---- Hearing reminders ---------------------------------------------
    @app.get("/api/hearings/upcoming")
    def upcoming_hearings():
        try:
            candidates = _scheduler().preview()
        except Exception:
            app.logger.exception("Could not evaluate upcoming hearings")
            return jsonify({"error": "Unable to load cases"}), 500
        return jsonify([candidate.to_json() for candidate in candidates])

    @app.post("/api/hearings/check")
    def run_hearing_check():
        report = _scheduler().run_tick()
        return jsonify(report.to_json())

    @app.get("/api/hearings/markers")
    def list_markers():
        return jsonify(_scheduler().ledger.list_markers())

    @app.post("/api/hearings/markers/purge")
    def purge_markers():
        data = _json_body()
        try:
            days = int(data.get("olderThanDays", 30))
        except (TypeError, ValueError):
            return jsonify({"error": "olderThanDays must be an integer"}), 400
        if days < 0:
            return jsonify({"error": "olderThanDays must not be negative"}), 400
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        removed = _scheduler().ledger.purge_markers(cutoff)
        return jsonify({"removed": removed})


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("HEARINGS_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(start_scheduler=True)
    app.run(
        host=os.environ.get("HEARINGS_HOST", "127.0.0.1"),
        port=int(os.environ.get("HEARINGS_PORT", "5000")),
        use_reloader=False,
    )


if __name__ == "__main__":
    main()
