"""Flask entrypoint.

Builds the app, wires the job orchestrator and registers the blueprints.
"""

from __future__ import annotations

import re
from typing import Optional

from flask import Flask
from flask_cors import CORS

from videostudio.config import config
from videostudio.services.video_orchestrator import JobOrchestrator, build_orchestrator


def create_app(orchestrator: Optional[JobOrchestrator] = None, init_database: bool = True) -> Flask:
    app = Flask(__name__)

    if config.ALLOW_ALL_ORIGINS:
        origins = [re.compile(r".*")]
    else:
        origins = config.ALLOWED_ORIGINS

    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["Content-Type"],
        methods=["GET", "POST", "OPTIONS"],
    )

    if orchestrator is None:
        if init_database:
            from videostudio.db import init_db

            init_db()
        orchestrator = build_orchestrator()
    app.extensions["video_orchestrator"] = orchestrator

    from videostudio.routes import register_blueprints

    register_blueprints(app)
    return app


if __name__ == "__main__":
    create_app().run(host=config.HOST, port=config.PORT)
