#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
import os
import sys

from flask import Flask, jsonify, request

import migrations
from comparison_store import ComparisonRepository
from comparisons import comparisons_bp
from database import db_connect, env_bool

APP_TITLE = os.getenv("APP_TITLE", "Procurement")
MIGRATION_CLI = "--migrate" in sys.argv


def create_app() -> Flask:
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.url_map.strict_slashes = False
    app.config["APP_TITLE"] = APP_TITLE

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    run_migrations_only = env_bool("RUN_MIGRATIONS", False) or MIGRATION_CLI
    if env_bool("AUTO_MIGRATE", False) and not run_migrations_only:
        try:
            with db_connect() as conn:
                migrations.run_migrations(conn)
        except Exception:
            app.logger.exception("Auto-migrate failed")

    @app.route("/favicon.ico", methods=["GET"])
    def favicon():
        return ("", 204)

    @app.route("/health", methods=["GET"])
    def health():
        try:
            with app.db_connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("select 1;")
                    cur.fetchone()
            return jsonify({"status": "ok", "db": "ok", "title": APP_TITLE})
        except Exception as e:
            return jsonify({"status": "ok", "db": "error", "details": str(e)}), 200

    app.register_blueprint(comparisons_bp)

    @app.errorhandler(404)
    def _not_found(_e):
        return jsonify({"ok": False, "error": "not found", "path": request.path}), 404

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return jsonify({"ok": False, "error": "method not allowed"}), 405

    # tests swap these for in-memory fakes
    app.db_connect = db_connect
    app.comparison_repository = ComparisonRepository(lambda: app.db_connect())
    app.run_migrations = migrations.run_migrations
    return app


if __name__ == "__main__":
    app = create_app()
    if MIGRATION_CLI or env_bool("RUN_MIGRATIONS", False):
        try:
            with app.db_connect() as conn:
                app.run_migrations(conn)
        except Exception:
            app.logger.exception("Migration run failed")
            sys.exit(1)
        sys.exit(0)
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=False)
else:
    app = create_app()
