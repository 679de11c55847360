"""Export job API routes for DubForge."""

import json
import logging
import queue
import threading
import uuid
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from dubforge import ffutil
from dubforge.analyzers.waveform import extract_waveform, get_waveform
from dubforge.engine import process
from dubforge.jobs import JobHandle, ProgressChannel
from dubforge.manifest import manifest_from_dict

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

_EXTENSIONS = {"wav": ".wav", "mp3": ".mp3", "aac": ".m4a"}


def _jobs() -> dict[str, dict]:
    return current_app.extensions["dubforge.jobs"]


def _registry():
    return current_app.extensions["dubforge.registry"]


@bp.route("/api/exports", methods=["POST"])
def start_export():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON manifest"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id

    for key in ("mix", "video_export"):
        if key in data and not isinstance(data[key], dict):
            return jsonify({"error": f"'{key}' must be an object"}), 400

    data = dict(data)
    if not data.get("output"):
        if data.get("video"):
            container = data.get("video_export", {}).get("container", "mp4")
            suffix = f".{container}"
        else:
            suffix = _EXTENSIONS.get(data.get("mix", {}).get("output_format", "wav"), ".wav")
        data["output"] = str(job_dir / f"output{suffix}")

    try:
        manifest = manifest_from_dict(data)
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400

    job_dir.mkdir(parents=True, exist_ok=True)
    channel = ProgressChannel()
    handle = JobHandle(job_id)
    job = {
        "dir": job_dir,
        "status": "processing",
        "error": None,
        "channel": channel,
        "handle": handle,
    }
    _jobs()[job_id] = job
    registry = _registry()

    def run():
        try:
            result = process(
                manifest,
                on_progress=lambda stage, percent: channel.publish(stage, percent),
                registry=registry,
                job_id=job_id,
                handle=handle,
            )
            job["result"] = {
                "output_path": str(result.output_path),
                "duration_ms": result.duration_final,
                "clips_mixed": result.clips_mixed,
                "clips_fitted": result.clips_fitted,
            }
            job["status"] = "done"
        except ffutil.CancelledError:
            job["status"] = "cancelled"
            job["error"] = "Export cancelled"
        except ffutil.ProcessError as e:
            job["status"] = "error"
            job["error"] = f"ffmpeg failed: {e.stderr[-500:]}" if e.stderr else str(e)
        except Exception as e:
            logger.exception("Export job %s failed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            channel.close(job["error"])

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"job_id": job_id, "status": "started"})


@bp.route("/api/exports/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs():
        return jsonify({"error": "Job not found"}), 404

    job = _jobs()[job_id]
    channel: ProgressChannel = job["channel"]

    def generate():
        try:
            for event in channel.events(timeout=120):
                yield f"data: {json.dumps({'stage': event.stage, 'progress': event.percent})}\n\n"
        except queue.Empty:
            yield "data: {\"error\": \"timeout\"}\n\n"
            return
        if job["status"] == "done":
            data = json.dumps({"stage": "complete", "progress": 100.0, "result": job.get("result")})
        else:
            data = json.dumps({"status": job["status"], "error": job["error"]})
        yield f"data: {data}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/exports/<job_id>/cancel", methods=["POST"])
def cancel_export(job_id: str):
    if job_id not in _jobs():
        return jsonify({"error": "Job not found"}), 404
    job = _jobs()[job_id]
    if not _registry().cancel(job_id):
        if job["status"] != "processing" or "handle" not in job:
            return jsonify({"error": f"Job is {job['status']}, not running"}), 409
        # Worker thread not registered yet; it stops as soon as it starts
        job["handle"].cancel()
    return jsonify({"cancelled": True})


@bp.route("/api/exports/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs():
        return jsonify({"error": "Job not found"}), 404

    job = _jobs()[job_id]
    resp = {"status": job["status"], "progress": job["channel"].percent}
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] in ("error", "cancelled"):
        resp["error"] = job.get("error")
    return jsonify(resp)


@bp.route("/api/exports/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs():
        return jsonify({"error": "Job not found"}), 404

    job = _jobs()[job_id]
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    return send_file(Path(job["result"]["output_path"]), as_attachment=True)


@bp.route("/api/waveform", methods=["POST"])
def waveform():
    data = request.get_json(silent=True) or {}
    if not data.get("media_path"):
        return jsonify({"error": "media_path is required"}), 400

    media_path = Path(data["media_path"])
    try:
        samples_per_second = int(data.get("samples_per_second", 100))
        if data.get("cache_dir"):
            result = get_waveform(
                media_path,
                Path(data["cache_dir"]),
                samples_per_second,
                refresh=bool(data.get("refresh", False)),
            )
        else:
            result = extract_waveform(media_path, samples_per_second)
    except ffutil.NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except ffutil.ProcessError as e:
        error = f"ffmpeg failed: {e.stderr[-500:]}" if e.stderr else str(e)
        return jsonify({"error": error}), 500

    return jsonify(result.to_dict())
