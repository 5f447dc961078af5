"""
HTTP surface of the processing pipeline: POST /api/process-memory.
"""
import logging

from flask import Flask, jsonify, request

from memory_loop.services.transcription import (
    TOO_LARGE_MESSAGE,
    TranscriptionStructuringService,
)

logger = logging.getLogger(__name__)

# Base64 inflates by 4/3; leave room above the 25 MiB decoded cap.
MAX_REQUEST_BYTES = 50 * 1024 * 1024


def create_app(service: TranscriptionStructuringService) -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_REQUEST_BYTES

    @app.errorhandler(413)
    def request_too_large(_error):
        return jsonify({"error": TOO_LARGE_MESSAGE}), 413

    @app.post("/api/process-memory")
    async def process_memory():
        payload = request.get_json(silent=True)
        status, body = await service.handle(payload)
        return jsonify(body), status

    return app
