"""Flask application factory for the DubForge export API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from dubforge.jobs import JobRegistry


def create_app(work_dir: Path | None = None, registry: JobRegistry | None = None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="dubforge_"))

    # Live ffmpeg handles by job id, and the job records the routes report on.
    app.extensions["dubforge.registry"] = registry if registry is not None else JobRegistry()
    app.extensions["dubforge.jobs"] = {}

    from dubforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app
