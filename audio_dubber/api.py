import io
import logging

from flask import Flask, Response, jsonify, request, send_file
from flask_cors import CORS
from werkzeug.utils import secure_filename

from .config import (DEFAULT_TARGET_LANGUAGE, LOG_LEVEL, MAX_UPLOAD_BYTES,
                     REQUEST_TIMEOUT)
from .errors import GENERIC_FAILURE_MESSAGE, InvalidRequestError, UnsupportedLanguageError
from .languages import is_supported_language, supported_languages
from .pipeline.orchestrator import PipelineRequest, get_default_pipeline

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_BYTES
CORS(app)

# Swapped out in tests
pipeline_factory = get_default_pipeline


def _text_response(message, status):
    return Response(message, status=status, mimetype='text/plain')


@app.route('/process-audio', methods=['POST'])
def process_audio_route():
    """Dub an uploaded audio file into the requested target language."""
    audio = request.files.get('audio')
    if audio is None:
        return _text_response(InvalidRequestError.public_message, 400)

    target_language = request.form.get('targetLanguage', DEFAULT_TARGET_LANGUAGE)
    if not is_supported_language(target_language):
        logger.warning(f"Rejected unsupported target language: {target_language!r}")
        return _text_response(UnsupportedLanguageError.public_message, 400)

    filename = secure_filename(audio.filename or '') or 'upload.wav'
    payload = audio.read()
    logger.info(f"Received {filename} ({len(payload)} bytes) for translation to {target_language}")

    try:
        result = pipeline_factory().run(
            PipelineRequest(audio=payload, target_language=target_language, filename=filename),
            timeout=REQUEST_TIMEOUT,
        )
    except Exception as e:
        logger.error(f"Pipeline raised unexpectedly: {e}")
        return _text_response(GENERIC_FAILURE_MESSAGE, 500)

    if not result.ok:
        return _text_response(result.message, result.status_code)

    return send_file(
        io.BytesIO(result.audio),
        mimetype=result.content_type,
        as_attachment=True,
        download_name=result.filename,
    )


@app.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'healthy', 'languages': supported_languages()})


if __name__ == '__main__':
    logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    app.run(host='0.0.0.0', port=5001, threaded=True)
