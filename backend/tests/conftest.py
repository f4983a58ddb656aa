"""
Shared pytest fixtures for Portrait Studio tests.
"""
import os
import sys
import base64
import pytest
from io import BytesIO
from types import SimpleNamespace
from PIL import Image

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables before importing any backend module
os.environ['LOG_TO_FILE'] = 'false'
os.environ.setdefault('GEMINI_API_KEY', 'test-key')


def make_png_bytes(color='blue', size=(64, 96)):
    img = Image.new('RGB', size, color=color)
    img_bytes = BytesIO()
    img.save(img_bytes, format='PNG')
    return img_bytes.getvalue()


def make_data_url(color='blue'):
    return 'data:image/png;base64,' + base64.b64encode(make_png_bytes(color)).decode('ascii')


# ---------------------------------------------------------------------------
# Fake google-genai client
# ---------------------------------------------------------------------------

def image_response(data=b'generated-png', mime_type='image/png'):
    """Response shaped like GenerateContentResponse with one inline image part."""
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type), text=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))], text=None)


def text_response(text):
    part = SimpleNamespace(inline_data=None, text=text)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))], text=text)


def video_operation(done, uri=None):
    response = None
    if uri is not None:
        response = SimpleNamespace(generated_videos=[SimpleNamespace(video=SimpleNamespace(uri=uri))])
    return SimpleNamespace(done=done, response=response)


class FakeModels:
    """Replays queued outcomes; an Exception in the queue is raised instead of returned."""

    def __init__(self, outcomes=None, video_operation=None):
        self.outcomes = list(outcomes or [])
        self.video_operation = video_operation
        self.calls = []
        self.video_calls = []

    def generate_content(self, model, contents, config=None):
        self.calls.append({'model': model, 'contents': contents, 'config': config})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def generate_videos(self, model, prompt, image=None, config=None):
        self.video_calls.append({'model': model, 'prompt': prompt, 'image': image, 'config': config})
        if isinstance(self.video_operation, Exception):
            raise self.video_operation
        return self.video_operation


class FakeOperations:
    def __init__(self, states=None):
        self.states = list(states or [])
        self.calls = 0

    def get(self, operation):
        self.calls += 1
        return self.states.pop(0)


class FakeClient:
    def __init__(self, outcomes=None, video_operation=None, poll_states=None):
        self.models = FakeModels(outcomes, video_operation)
        self.operations = FakeOperations(poll_states)


class FakeHttpResponse:
    def __init__(self, status_code=200, content=b'fake-mp4', reason='OK', headers=None):
        self.status_code = status_code
        self.content = content
        self.reason = reason
        self.headers = headers or {'Content-Type': 'video/mp4'}

    @property
    def ok(self):
        return self.status_code < 400


# ---------------------------------------------------------------------------
# Fake generation service (stands in for the gemini_service module)
# ---------------------------------------------------------------------------

class FakeService:
    """
    Records calls and returns canned results. Set the *_error attributes to
    make a step fail; hooks run inside the call to simulate concurrent edits.
    """

    def __init__(self, scenarios=None):
        self.scenarios = scenarios or ['scene-a', 'scene-b', 'scene-c', 'scene-d', 'scene-e']
        self.analysis_calls = []
        self.scenario_calls = []
        self.image_calls = []
        self.meme_calls = []
        self.video_calls = []

        self.analysis_error = None
        self.scenario_error = None
        self.failing_scenarios = {}  # scenario text -> exception
        self.meme_error = None
        self.video_error = None

        self.on_scenarios = None
        self.on_image = None
        self.on_video = None

    def analyze_image_content(self, image_data_urls, instruction):
        self.analysis_calls.append((list(image_data_urls), instruction))
        if self.analysis_error:
            raise self.analysis_error
        return f'description of {len(image_data_urls)} images' if image_data_urls else ''

    def generate_scenarios(self, subject_desc, object_desc, style_desc, user_intent=None):
        self.scenario_calls.append((subject_desc, object_desc, style_desc, user_intent))
        if self.on_scenarios:
            self.on_scenarios()
        if self.scenario_error:
            raise self.scenario_error
        return list(self.scenarios)

    def generate_styled_image(self, source_images, prompt):
        self.image_calls.append((source_images, prompt))
        if self.on_image:
            self.on_image(prompt)
        for scenario, error in self.failing_scenarios.items():
            if f'"{scenario}"' in prompt:
                raise error
        return f'data:image/png;base64,{base64.b64encode(prompt.encode()[:24]).decode()}'

    def generate_meme_image(self, image_data_url, caption):
        self.meme_calls.append((image_data_url, caption))
        if self.meme_error:
            raise self.meme_error
        return 'data:image/png;base64,bWVtZQ=='

    def generate_styled_video(self, image_data_url, prompt):
        self.video_calls.append((image_data_url, prompt))
        if self.on_video:
            self.on_video()
        if self.video_error:
            raise self.video_error
        from gemini_service import GeneratedVideo
        return GeneratedVideo(data=b'fake-mp4', source_uri='https://example.test/video.mp4')


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_service():
    return FakeService()


@pytest.fixture
def app(fake_service):
    """Create Flask application for testing, running long operations inline."""
    from app import create_app
    flask_app = create_app(service=fake_service, background_tasks=False)
    flask_app.config['TESTING'] = True

    yield flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def sample_image():
    """PNG bytes for multipart uploads."""
    return make_png_bytes('blue')


@pytest.fixture
def subject_url():
    return make_data_url('red')


@pytest.fixture
def object_url():
    return make_data_url('green')


@pytest.fixture
def style_url():
    return make_data_url('blue')


@pytest.fixture
def no_sleep(monkeypatch):
    """Replace time.sleep in gemini_service; returns the list of requested delays."""
    import gemini_service
    delays = []
    monkeypatch.setattr(gemini_service.time, 'sleep', lambda seconds: delays.append(seconds))
    return delays


@pytest.fixture
def session_factory(fake_service):
    """Build a GenerationSession bound to the fake service."""
    from session import GenerationSession

    def factory(**kwargs):
        return GenerationSession(service=fake_service, **kwargs)

    return factory
