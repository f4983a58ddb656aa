"""
Tests for health check and preset endpoints.
"""
import pytest

from prompts import VIDEO_MOTION_PRESETS, MEME_CAPTION_PRESETS


class TestHealthEndpoint:
    """Tests for /api/health endpoint."""

    def test_health_check_returns_200(self, client):
        """GET /api/health should return 200 OK."""
        response = client.get('/api/health')
        assert response.status_code == 200

    def test_health_check_returns_status_ok(self, client):
        """GET /api/health should return status: ok."""
        data = client.get('/api/health').get_json()
        assert data['status'] == 'ok'
        assert 'Portrait Studio' in data['message']

    def test_health_check_post_not_allowed(self, client):
        """POST /api/health should return 405 Method Not Allowed."""
        response = client.post('/api/health')
        assert response.status_code == 405


class TestPresetsEndpoint:
    """Tests for GET /api/presets endpoint."""

    def test_list_presets(self, client):
        response = client.get('/api/presets')
        assert response.status_code == 200
        data = response.get_json()
        assert data['video_prompts'] == VIDEO_MOTION_PRESETS
        assert data['meme_captions'] == MEME_CAPTION_PRESETS

    def test_defaults_are_first_presets(self, client):
        data = client.get('/api/presets').get_json()
        assert data['default_video_prompt'] == VIDEO_MOTION_PRESETS[0]
        assert data['default_meme_caption'] == MEME_CAPTION_PRESETS[0]
