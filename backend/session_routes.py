"""
Session API Routes
Inbound interface for the presentation layer: every orchestration operation
plus a JSON snapshot of session state for rendering.
"""
import threading
from io import BytesIO

from flask import Blueprint, current_app, request, jsonify, send_file
from werkzeug.utils import secure_filename

from logging_config import get_logger, get_session_logger
from image_codec import encode_image_bytes
from models import SOURCE_SLOTS, SessionState, ItemStatus, MediaKind, MediaStatus, DerivedMediaState
from session import SessionStateError
import prompts

logger = get_logger('session_routes')

session_bp = Blueprint('sessions', __name__, url_prefix='/api/sessions')
preset_bp = Blueprint('presets', __name__, url_prefix='/api/presets')

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def _store():
    return current_app.config['SESSION_STORE']


def _get_session_or_404(session_id):
    session = _store().get(session_id)
    if session is None:
        return None, (jsonify({'error': f'Session not found: {session_id}'}), 404)
    return session, None


def _run_background(session, label, target, *args):
    """Start a long-running session operation without blocking the request."""
    log = get_session_logger('session_routes', session.session_id)

    def runner():
        try:
            target(*args)
        except Exception as e:
            log.error(f"{label} crashed: {e}", exc_info=True)

    if current_app.config.get('BACKGROUND_TASKS', True):
        thread = threading.Thread(target=runner, name=f'{label}-{session.session_id}', daemon=True)
        thread.start()
        log.info(f"{label} started in background")
    else:
        runner()


def _media_to_dict(session_id: str, kind: MediaKind, state: DerivedMediaState) -> dict:
    data = {'status': state.status.value}
    if state.status == MediaStatus.DONE:
        if kind == MediaKind.VIDEO:
            data['url'] = f'/api/sessions/{session_id}/media/video'
            data['mime_type'] = state.result.mime_type
            data['size_bytes'] = state.result.size_bytes
        else:
            data['url'] = state.result
    elif state.status == MediaStatus.ERROR:
        data['error'] = state.error
        data['is_quota_error'] = state.is_quota_error
    return data


def snapshot_to_dict(snapshot) -> dict:
    return {
        'session_id': snapshot.session_id,
        'state': snapshot.state.value,
        'source_counts': snapshot.source_counts,
        'scenarios': snapshot.scenarios,
        'items': [item.to_dict() for item in snapshot.items],
        'video': _media_to_dict(snapshot.session_id, MediaKind.VIDEO, snapshot.video),
        'meme': _media_to_dict(snapshot.session_id, MediaKind.MEME, snapshot.meme),
        'video_config': {'source_index': snapshot.video_config.source_index,
                         'text': snapshot.video_config.text},
        'meme_config': {'source_index': snapshot.meme_config.source_index,
                        'text': snapshot.meme_config.text},
        'reauthorization_required': snapshot.reauthorization_required,
    }


@session_bp.errorhandler(SessionStateError)
def handle_state_error(e):
    return jsonify({'error': str(e)}), 409


@session_bp.errorhandler(ValueError)
def handle_value_error(e):
    return jsonify({'error': str(e)}), 400


@session_bp.route('', methods=['POST'])
def create_session():
    """Create an empty session in the idle state."""
    session = _store().create()
    logger.info(f"Created session {session.session_id}")
    return jsonify(snapshot_to_dict(session.snapshot())), 201


@session_bp.route('/<session_id>', methods=['GET'])
def get_session(session_id):
    """Current state for rendering; poll this while operations run."""
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    return jsonify(snapshot_to_dict(session.snapshot()))


@session_bp.route('/<session_id>', methods=['DELETE'])
def delete_session(session_id):
    if not _store().delete(session_id):
        return jsonify({'error': f'Session not found: {session_id}'}), 404
    return jsonify({'status': 'deleted', 'session_id': session_id})


@session_bp.route('/<session_id>/reset', methods=['POST'])
def reset_session(session_id):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    session.reset()
    return jsonify(snapshot_to_dict(session.snapshot()))


@session_bp.route('/<session_id>/images/<slot>', methods=['PUT'])
def set_source_images(session_id, slot):
    """
    Replace one source group (subject, object or style).

    Accepts either multipart files under 'images' or JSON
    {"images": ["data:image/...;base64,...", ...]}.
    """
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    if slot not in SOURCE_SLOTS:
        return jsonify({'error': f'Unknown image slot: {slot}'}), 400

    files = request.files.getlist('images')
    if files:
        images = []
        for f in files:
            if not f or not allowed_file(f.filename):
                return jsonify({'error': f'Invalid image file: {secure_filename(f.filename or "")}'}), 400
            images.append(encode_image_bytes(f.read(), context=secure_filename(f.filename)))
    else:
        payload = request.get_json(silent=True) or {}
        images = payload.get('images', [])
        if not isinstance(images, list):
            return jsonify({'error': "'images' must be a list of data URLs"}), 400

    session.set_source_images(slot, images)
    return jsonify(snapshot_to_dict(session.snapshot()))


@session_bp.route('/<session_id>/generate', methods=['POST'])
def run_full_generation(session_id):
    """Start the full run: analysis, scenarios, then every portrait in parallel."""
    session, error = _get_session_or_404(session_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    user_intent = payload.get('prompt') or None

    # Validate state synchronously so the caller gets a 409 instead of a silent no-op
    if session.state != SessionState.READY:
        raise SessionStateError(f"Cannot start generation from state '{session.state.value}'")

    _run_background(session, 'full-generation', session.run_full_generation, user_intent)
    return jsonify({
        'status': 'started',
        'session_id': session.session_id,
        'message': f'Generation started. Poll /api/sessions/{session.session_id} for progress.'
    }), 202


@session_bp.route('/<session_id>/items/<int:index>/regenerate', methods=['POST'])
def regenerate_item(session_id, index):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    if session.state != SessionState.RESULTS_SHOWN:
        raise SessionStateError(f"Cannot regenerate in state '{session.state.value}'")
    if not 0 <= index < len(session.scenarios) or not session.scenarios[index]:
        return jsonify({'error': f'No scenario at index {index}'}), 404

    _run_background(session, f'regenerate-{index}', session.regenerate_item, index)
    return jsonify({'status': 'started', 'index': index}), 202


@session_bp.route('/<session_id>/items', methods=['POST'])
def append_custom_item(session_id):
    """Add a custom scene at the next index and generate it."""
    session, error = _get_session_or_404(session_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    text = (payload.get('text') or '').strip()
    if not text:
        return jsonify({'error': 'Custom scene text is required'}), 400
    if session.state != SessionState.RESULTS_SHOWN:
        raise SessionStateError(f"Cannot add a custom scene in state '{session.state.value}'")

    next_index = len(session.items)
    _run_background(session, 'custom-item', session.append_custom_item, text)
    return jsonify({'status': 'started', 'index': next_index}), 202


@session_bp.route('/<session_id>/media/<kind>', methods=['PUT'])
def configure_derived_media(session_id, kind):
    """Set {"source_index": int, "text": str} for the video or meme."""
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    try:
        kind = MediaKind(kind)
    except ValueError:
        return jsonify({'error': f'Unknown media kind: {kind}'}), 400

    payload = request.get_json(silent=True) or {}
    try:
        config = session.configure_derived_media(kind, payload.get('source_index'), payload.get('text'))
    except (TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid input: {str(e)}'}), 400
    return jsonify({'source_index': config.source_index, 'text': config.text})


@session_bp.route('/<session_id>/media/<kind>/generate', methods=['POST'])
def generate_derived_media(session_id, kind):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    try:
        kind = MediaKind(kind)
    except ValueError:
        return jsonify({'error': f'Unknown media kind: {kind}'}), 400

    config = session.media_config(kind)
    items = session.items
    if not 0 <= config.source_index < len(items) or items[config.source_index].status != ItemStatus.DONE:
        return jsonify({'status': 'skipped', 'message': f'Portrait {config.source_index} is not ready'}), 200

    _run_background(session, f'{kind.value}-generation', session.generate_derived_media, kind)
    return jsonify({'status': 'started', 'kind': kind.value}), 202


@session_bp.route('/<session_id>/media/video', methods=['GET'])
def download_video(session_id):
    """Serve the generated video bytes."""
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    state = session.media_state(MediaKind.VIDEO)
    if state.status != MediaStatus.DONE:
        return jsonify({'error': 'No video available'}), 404
    return send_file(
        BytesIO(state.result.data),
        mimetype=state.result.mime_type,
        download_name=f'portrait-{session_id}.mp4'
    )


@session_bp.route('/<session_id>/credential', methods=['POST'])
def credential_selected(session_id):
    """Called after the user picked a new API key."""
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    session.mark_credential_selected()
    return jsonify(snapshot_to_dict(session.snapshot()))


@preset_bp.route('', methods=['GET'])
def list_presets():
    """Motion prompts for video and caption presets for memes."""
    return jsonify({
        'video_prompts': prompts.VIDEO_MOTION_PRESETS,
        'meme_captions': prompts.MEME_CAPTION_PRESETS,
        'default_video_prompt': prompts.VIDEO_MOTION_PRESETS[0],
        'default_meme_caption': prompts.MEME_CAPTION_PRESETS[0],
    })
