"""
Translation task routes: submit, status, download, listing
"""
import json
import logging
import os
import uuid
from pathlib import Path

from flask import Blueprint, g, jsonify, request, send_file
from werkzeug.utils import secure_filename

from doctranslate.config import SESSION_COOKIE_NAME, TranslationSettings
from doctranslate.core.documents import GenerateMode, SUPPORTED_EXTENSIONS, validate_document
from doctranslate.core.exceptions import DocumentValidationError
from doctranslate.core.llm import ProviderConfig
from ..handlers import TranslationJob
from ..session_store import session_digest
from ..task_store import COMPLETED

logger = logging.getLogger(__name__)


def _form_flag(name: str) -> bool:
    return request.form.get(name, '').strip().lower() in ('true', '1', 'yes', 'on')


def _source_name(filename: str, extension: str) -> str:
    """Display name of the upload, never used as a filesystem path"""
    safe = secure_filename(os.path.basename(filename))
    if not safe or not safe.lower().endswith(extension):
        safe = f"document{extension}"
    return safe


def create_translation_blueprint(task_store, orchestrator, session_store, settings: TranslationSettings):
    """
    Create and configure the translation blueprint

    Args:
        task_store: Shared TaskStore (read-only from request handlers)
        orchestrator: TranslationOrchestrator that runs submitted tasks
        session_store: SessionStore backing the session cookie
        settings: Runtime settings (upload directory and limits)
    """
    bp = Blueprint('translation', __name__)

    @bp.route('/api/translate', methods=['POST'])
    def submit_translation():
        """Validate an upload and queue a translation task for the caller's session"""
        upload = request.files.get('file')
        if upload is None or not upload.filename:
            return jsonify({"error": "No file provided"}), 400

        target_language = request.form.get('targetLanguage', '').strip()
        if not target_language:
            return jsonify({"error": "targetLanguage is required"}), 400

        extension = Path(upload.filename).suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            return jsonify({"error": f"Unsupported file type '{extension or upload.filename}', "
                                     f"expected .epub or .pdf"}), 400

        try:
            llm_config = json.loads(request.form.get('llmConfig') or '{}')
        except json.JSONDecodeError:
            return jsonify({"error": "llmConfig must be valid JSON"}), 400
        if not isinstance(llm_config, dict):
            return jsonify({"error": "llmConfig must be a JSON object"}), 400

        try:
            provider_config = ProviderConfig.from_form(llm_config)
            generate_mode = GenerateMode.parse(request.form.get('generateMode'))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        task_id = str(uuid.uuid4())
        upload_dir = Path(settings.upload_dir) / session_digest(g.session.session_id)
        upload_dir.mkdir(parents=True, exist_ok=True)
        upload_path = upload_dir / f"{task_id}{extension}"
        upload.save(str(upload_path))

        try:
            validate_document(str(upload_path))
        except DocumentValidationError as e:
            upload_path.unlink(missing_ok=True)
            return jsonify({"error": e.message}), 400

        job = TranslationJob(
            source_path=str(upload_path),
            source_file=_source_name(upload.filename, extension),
            target_language=target_language,
            provider_config=provider_config,
            generate_mode=generate_mode,
            user_prompt=request.form.get('userPrompt', '').strip() or None,
            force_retranslate=_form_flag('forceRetranslate'),
            output_format=request.form.get('outputFormat', '').strip(),
        )
        orchestrator.submit(g.session.session_id, job, task_id=task_id)

        return jsonify({"taskId": task_id, "status": "pending"}), 202

    @bp.route('/api/status/<task_id>', methods=['GET'])
    def get_task_status(task_id):
        """Snapshot of one task owned by the caller"""
        task = task_store.get(task_id, g.session.session_id)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        return jsonify(task.to_dict(include_logs=True))

    @bp.route('/api/download/<task_id>', methods=['GET'])
    def download_result(task_id):
        """Send the translated document of a completed task"""
        task = task_store.get(task_id, g.session.session_id)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        if task.status != COMPLETED or not task.output_path:
            return jsonify({"error": "Task has no output yet", "status": task.status}), 409
        if not os.path.isfile(task.output_path):
            logger.error(f"Output of task {task_id} is missing on disk")
            return jsonify({"error": "Output file not found"}), 404

        download_name = f"translated_{Path(task.source_file).stem}{Path(task.output_path).suffix}"
        return send_file(os.path.abspath(task.output_path), as_attachment=True, download_name=download_name)

    @bp.route('/api/tasks', methods=['GET'])
    def list_tasks():
        """Tasks of the caller's session, newest first"""
        tasks = task_store.list_for_session(g.session.session_id)
        return jsonify({"tasks": [task.to_dict() for task in tasks]})

    @bp.route('/api/session', methods=['DELETE'])
    def delete_session():
        """Forget the caller's session along with its tasks and files"""
        deleted = session_store.delete(g.session.session_id)
        g.session_deleted = True
        response = jsonify({"deleted": deleted})
        response.delete_cookie(SESSION_COOKIE_NAME, path='/')
        return response

    @bp.route('/api/health', methods=['GET'])
    def health_check():
        return jsonify({"status": "ok", "sessions": session_store.count()})

    return bp
