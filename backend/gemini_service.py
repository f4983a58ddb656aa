"""
Gemini Service - portrait, meme, analysis and video generation
Thin orchestration steps over google-genai: validate, build request,
call (with retry for image edits), map the outcome into typed errors.
"""
import os
import re
import json
import time
import base64
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests
from dotenv import load_dotenv

load_dotenv()

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from logging_config import get_logger, log_timing
import image_codec
import prompts
from models import SourceImageSet

logger = get_logger('gemini')

# Model names
TEXT_MODEL = os.getenv('GEMINI_TEXT_MODEL', 'gemini-2.5-flash')
IMAGE_MODEL = os.getenv('GEMINI_IMAGE_MODEL', 'gemini-2.5-flash-image')
VIDEO_MODEL = os.getenv('GEMINI_VIDEO_MODEL', 'veo-3.1-fast-generate-preview')

REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '120'))  # seconds per API call
MAX_RETRIES = 3           # total attempts for image edit calls
RETRY_BASE_DELAY = 1.0    # seconds; doubles before each further attempt
VIDEO_POLL_INTERVAL = 10  # seconds between operation status checks
DOWNLOAD_TIMEOUT = 300    # seconds for fetching the finished video

VIDEO_ASPECT_RATIO = '9:16'
VIDEO_RESOLUTION = '720p'

NO_TEXT_PLACEHOLDER = 'No text response received.'


class GeminiServiceError(Exception):
    """Base error for generation failures; carries the quota flag for the UI"""
    def __init__(self, message: str, is_quota_error: bool = False):
        super().__init__(message)
        self.message = message
        self.is_quota_error = is_quota_error


class QuotaExceededError(GeminiServiceError):
    """Rate limit / resource exhaustion. Never retried automatically."""
    def __init__(self, message: str):
        super().__init__(message, is_quota_error=True)


class TransientServiceError(GeminiServiceError):
    """Server-side fault that was still failing after every retry"""
    pass


class NoImageReturnedError(GeminiServiceError):
    """The model answered with text instead of an image"""
    pass


class InvalidScenarioResponseError(GeminiServiceError):
    """Scenario response was not a non-empty JSON array of strings"""
    pass


class OperationIncompleteError(GeminiServiceError):
    """Video operation finished without a usable result locator"""
    pass


class DownloadError(GeminiServiceError):
    """Fetching the finished video failed"""
    pass


@dataclass
class GeneratedVideo:
    """In-memory handle to a downloaded video"""
    data: bytes = field(repr=False)
    mime_type: str = 'video/mp4'
    source_uri: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def _get_api_key() -> str:
    api_key = os.getenv('GEMINI_API_KEY') or os.getenv('API_KEY')  # Read dynamically for key rotation
    if not api_key:
        raise GeminiServiceError('GEMINI_API_KEY environment variable not set')
    return api_key


def _get_client(timeout: int = REQUEST_TIMEOUT):
    """
    Initialize and return Gemini client with timeout configuration.

    Args:
        timeout: HTTP request timeout in seconds (default: REQUEST_TIMEOUT)
    """
    return genai.Client(
        api_key=_get_api_key(),
        http_options={'timeout': timeout * 1000}  # milliseconds
    )


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------
# Structured fields from google.genai.errors.APIError are checked first; the
# substring checks keep working when errors arrive wrapped or re-raised as text.

def is_quota_error(error: BaseException) -> bool:
    """True for HTTP 429 / RESOURCE_EXHAUSTED failures."""
    if isinstance(error, QuotaExceededError):
        return True
    if isinstance(error, genai_errors.APIError):
        if error.code == 429 or error.status == 'RESOURCE_EXHAUSTED':
            return True
    error_str = str(error)
    return '429' in error_str or 'RESOURCE_EXHAUSTED' in error_str


def is_transient_error(error: BaseException) -> bool:
    """True for internal server errors worth retrying."""
    if isinstance(error, genai_errors.ServerError):
        return True
    if isinstance(error, genai_errors.APIError) and error.code == 500:
        return True
    error_str = str(error)
    return '"code":500' in error_str or 'INTERNAL' in error_str


def _classify(error: Exception, quota_message: str, generic_prefix: str) -> GeminiServiceError:
    """
    Map a failure onto the error taxonomy.

    The quota check runs first, so a taxonomy error raised internally (a 429
    download status, a text-only answer quoting RESOURCE_EXHAUSTED) still
    comes back quota-flagged.
    """
    if isinstance(error, QuotaExceededError):
        return error
    if is_quota_error(error):
        return QuotaExceededError(quota_message)
    if isinstance(error, GeminiServiceError):
        return error
    message = f"{generic_prefix} Details: {error}"
    if is_transient_error(error):
        return TransientServiceError(message)
    return GeminiServiceError(message)


def _raise_classified(error: Exception, label: str, quota_message: str, generic_prefix: str):
    """Log and raise the classified form of error. Taxonomy errors pass through unchanged."""
    classified = _classify(error, quota_message, generic_prefix)
    logger.error(f"{label} failed: {classified}")
    if classified is error:
        raise error
    raise classified from error


# ---------------------------------------------------------------------------
# Retry wrapper and response extraction
# ---------------------------------------------------------------------------

def call_with_retry(request_builder: Callable[[], types.GenerateContentResponse],
                    max_attempts: int = MAX_RETRIES,
                    base_delay: float = RETRY_BASE_DELAY):
    """
    Run request_builder, retrying only on transient server errors.

    Delay before attempt k+1 is base_delay * 2**(k-1): 1s then 2s with the
    defaults. Anything else, or the last transient failure, is re-raised
    unchanged.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return request_builder()
        except Exception as e:
            if is_transient_error(e) and attempt < max_attempts:
                delay = base_delay * (2 ** (attempt - 1))
                logger.warning(f"Internal error (attempt {attempt}/{max_attempts}), retrying in {delay:.0f}s: {e}")
                time.sleep(delay)
                continue
            logger.error(f"Gemini call failed (attempt {attempt}/{max_attempts}): {e}")
            raise


def extract_image(response) -> str:
    """
    Return the first inline image in the response as a data URL.

    Raises:
        NoImageReturnedError: if no part carries image data; the message embeds
            any text the model sent back instead
    """
    candidates = getattr(response, 'candidates', None) or []
    parts = []
    if candidates and candidates[0].content and candidates[0].content.parts:
        parts = candidates[0].content.parts

    for part in parts:
        inline = getattr(part, 'inline_data', None)
        if inline and inline.data:
            data = inline.data
            if isinstance(data, bytes):
                data = base64.b64encode(data).decode('ascii')
            return f"data:{inline.mime_type}{image_codec.BASE64_MARKER}{data}"

    text = ''.join(getattr(part, 'text', None) or '' for part in parts).strip()
    logger.error(f"Model did not return an image. Response text: {text[:200]}")
    raise NoImageReturnedError(
        f'The AI model responded with text instead of an image: "{text or NO_TEXT_PLACEHOLDER}"'
    )


def _strip_code_fence(text: str) -> str:
    """Remove a ```json ... ``` or ``` ... ``` wrapper if the model added one."""
    text = text.strip()
    match = re.match(r'^```(?:json)?\s*(.*?)\s*```$', text, re.DOTALL)
    return match.group(1).strip() if match else text


# ---------------------------------------------------------------------------
# Generation functions
# ---------------------------------------------------------------------------

def generate_scenarios(
    subject_desc: str,
    object_desc: str,
    style_desc: str,
    user_intent: Optional[str] = None,
    client=None
) -> list[str]:
    """
    Ask the text model for up to SCENARIO_COUNT portrait scenarios.

    With no descriptions and no user idea, the built-in fallback list is
    returned and no request is made.

    Raises:
        InvalidScenarioResponseError: response is not a non-empty list of strings
        QuotaExceededError: usage limits hit
        GeminiServiceError: any other failure
    """
    if not prompts.has_scenario_inputs(subject_desc, object_desc, style_desc, user_intent):
        logger.info("No descriptions or user idea, using fallback scenarios")
        return list(prompts.FALLBACK_SCENARIOS)

    prompt = prompts.build_scenario_prompt(subject_desc, object_desc, style_desc, user_intent)

    try:
        client = client or _get_client()
        with log_timing(logger, 'Scenario generation'):
            response = client.models.generate_content(
                model=TEXT_MODEL,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type='application/json'
                )
            )

        json_text = _strip_code_fence(response.text or '')
        try:
            scenarios = json.loads(json_text)
        except json.JSONDecodeError as e:
            raise InvalidScenarioResponseError(
                f'The AI failed to generate creative ideas. Details: invalid JSON ({e})'
            )

        if (not isinstance(scenarios, list) or not scenarios
                or not all(isinstance(s, str) for s in scenarios)):
            raise InvalidScenarioResponseError(
                'The AI failed to generate creative ideas. Details: AI did not return a valid array of scenario strings.'
            )

        logger.info(f"Generated {len(scenarios)} scenarios (keeping {min(len(scenarios), prompts.SCENARIO_COUNT)})")
        return scenarios[:prompts.SCENARIO_COUNT]

    except Exception as e:
        _raise_classified(
            e, 'Scenario generation',
            quota_message='Failed to generate creative ideas due to API usage limits.',
            generic_prefix='The AI failed to generate creative ideas.'
        )


def generate_styled_image(source_images: SourceImageSet, prompt: str, client=None) -> str:
    """
    Compose a new portrait from all source images plus the composition prompt.

    Images are sent subject first, then object, then style, followed by the
    prompt. Malformed data URLs raise image_codec.FormatError before any
    request is made.

    Returns:
        Data URL of the generated image
    """
    parts = (
        [image_codec.to_part(url, 'Subject Image') for url in source_images.subject]
        + [image_codec.to_part(url, 'Object Image') for url in source_images.object]
        + [image_codec.to_part(url, 'Style Image') for url in source_images.style]
    )
    parts.append(types.Part.from_text(text=prompt))

    try:
        client = client or _get_client()
        with log_timing(logger, f'Styled image ({len(parts) - 1} source images)'):
            response = call_with_retry(lambda: _edit_image(client, parts))
        return extract_image(response)
    except Exception as e:
        _raise_classified(
            e, 'Styled image generation',
            quota_message='Image generation failed due to API usage limits. Please check your quota in Google AI Studio.',
            generic_prefix='The AI model failed to generate an image.'
        )


def generate_meme_image(image_data_url: str, caption: str, client=None) -> str:
    """Overlay caption at the bottom of an existing image, meme style."""
    parts = [
        image_codec.to_part(image_data_url, 'Meme Source Image'),
        types.Part.from_text(text=prompts.build_meme_prompt(caption)),
    ]

    try:
        client = client or _get_client()
        with log_timing(logger, 'Meme image'):
            response = call_with_retry(lambda: _edit_image(client, parts))
        return extract_image(response)
    except Exception as e:
        _raise_classified(
            e, 'Meme generation',
            quota_message='Meme generation failed due to API usage limits.',
            generic_prefix='The AI model failed to generate the meme.'
        )


def analyze_image_content(image_data_urls: list[str], instruction: str, client=None) -> str:
    """
    Describe a group of images in text. Single attempt, no retry.

    Returns "" without calling the model when the group is empty.
    """
    if not image_data_urls:
        return ''

    parts = [image_codec.to_part(url, 'Image for analysis') for url in image_data_urls]
    parts.append(types.Part.from_text(text=instruction))

    try:
        client = client or _get_client()
        with log_timing(logger, f'Image analysis ({len(image_data_urls)} images)'):
            response = client.models.generate_content(
                model=TEXT_MODEL,
                contents=parts
            )
        return (response.text or '').strip()
    except Exception as e:
        _raise_classified(
            e, 'Image analysis',
            quota_message='Image analysis failed due to API usage limits.',
            generic_prefix='The AI model failed to analyze the image content.'
        )


def generate_styled_video(
    image_data_url: str,
    prompt: str,
    client=None,
    poll_interval: float = VIDEO_POLL_INTERVAL,
    max_wait: Optional[float] = None
) -> GeneratedVideo:
    """
    Animate a still image into a short vertical clip.

    Starts a long-running video operation, polls it every poll_interval
    seconds until done, then downloads the result with the API key appended.
    max_wait=None polls without limit.

    Raises:
        image_codec.FormatError: image is not data:image/<type>;base64,...
        OperationIncompleteError: operation finished without a video URI,
            or max_wait elapsed
        DownloadError: the video fetch returned a non-success status
        QuotaExceededError / GeminiServiceError: request failures
    """
    decoded = image_codec.decode_strict(image_data_url, 'video generation')
    image_bytes = image_codec.payload_bytes(decoded, 'video generation')

    try:
        api_key = _get_api_key()
        client = client or _get_client()

        logger.info(f"Starting video generation ({VIDEO_MODEL})")
        operation = client.models.generate_videos(
            model=VIDEO_MODEL,
            prompt=prompt,
            image=types.Image(image_bytes=image_bytes, mime_type=decoded.mime_type),
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                aspect_ratio=VIDEO_ASPECT_RATIO,
                resolution=VIDEO_RESOLUTION
            )
        )

        start_time = time.time()
        polls = 0
        while not operation.done:
            if max_wait is not None and time.time() - start_time >= max_wait:
                raise OperationIncompleteError(
                    f'Video generation did not finish within {max_wait:.0f}s.'
                )
            time.sleep(poll_interval)
            operation = client.operations.get(operation)
            polls += 1
            logger.debug(f"Video operation poll {polls}: done={operation.done}")

        download_uri = _video_uri(operation)
        if not download_uri:
            raise OperationIncompleteError(
                'Video generation completed, but no download link was provided.'
            )

        logger.info(f"Video ready after {polls} polls, downloading")
        response = requests.get(download_uri, params={'key': api_key}, timeout=DOWNLOAD_TIMEOUT)
        if not response.ok:
            raise DownloadError(
                f'Failed to download video file. Status: {response.status_code} {response.reason}'
            )

        video = GeneratedVideo(
            data=response.content,
            mime_type=response.headers.get('Content-Type', 'video/mp4'),
            source_uri=download_uri
        )
        logger.info(f"Video downloaded: {video.size_bytes / 1024:.0f}KB")
        return video

    except Exception as e:
        _raise_classified(
            e, 'Video generation',
            quota_message='Video generation failed due to API usage limits. Please check your quota and billing in Google AI Studio.',
            generic_prefix='The AI model failed to generate a video.'
        )


def _edit_image(client, parts):
    return client.models.generate_content(
        model=IMAGE_MODEL,
        contents=parts,
        config=types.GenerateContentConfig(
            response_modalities=['IMAGE']
        )
    )


def _video_uri(operation) -> Optional[str]:
    response = getattr(operation, 'response', None) or getattr(operation, 'result', None)
    videos = getattr(response, 'generated_videos', None) if response else None
    if not videos:
        return None
    video = getattr(videos[0], 'video', None)
    return getattr(video, 'uri', None) if video else None
