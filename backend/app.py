"""
Portrait Studio - Flask Backend
"""
from flask import Flask, jsonify
from flask_cors import CORS
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# Import logging (must be after dotenv for LOG_DIR/LOG_LEVEL env vars)
from logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger('app')

from session import SessionStore
from session_routes import session_bp, preset_bp


def create_app(service=None, background_tasks: bool = True) -> Flask:
    """
    Build the Flask application.

    Args:
        service: Generation backend shared by all sessions (defaults to
            the gemini_service module); tests pass a fake here
        background_tasks: Run long operations on threads. When False they
            run inline inside the request.
    """
    app = Flask(__name__)
    CORS(app)

    app.config['MAX_CONTENT_LENGTH'] = 50 * 1024 * 1024  # 50MB of source images per request
    app.config['SESSION_STORE'] = SessionStore(service=service)
    app.config['BACKGROUND_TASKS'] = background_tasks

    app.register_blueprint(session_bp)
    app.register_blueprint(preset_bp)

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({'status': 'ok', 'message': 'Portrait Studio API is running'})

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({'error': 'Upload too large'}), 413

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Server error: {e}", exc_info=True)
        return jsonify({'error': f'Server error: {str(e)}'}), 500

    return app


app = create_app()


if __name__ == '__main__':
    logger.info("Starting Flask server on port 5001")
    app.run(debug=False, host='0.0.0.0', port=5001)
