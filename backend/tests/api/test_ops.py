from __future__ import annotations

import pytest

from circlehood.settings import settings


@pytest.fixture()
def metrics_settings():
	original = (settings.obs_metrics_public, settings.obs_admin_token)
	try:
		yield settings
	finally:
		settings.obs_metrics_public, settings.obs_admin_token = original


@pytest.mark.asyncio
async def test_health_live(api_client):
	resp = await api_client.get("/health/live")
	assert resp.status_code == 200
	assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_metrics_fail_closed_without_admin_token(api_client, metrics_settings):
	metrics_settings.obs_metrics_public = False
	metrics_settings.obs_admin_token = None

	resp = await api_client.get("/metrics")
	assert resp.status_code == 403
	assert resp.json()["detail"] == "admin_token_not_configured"


@pytest.mark.asyncio
async def test_metrics_with_admin_token(api_client, metrics_settings):
	metrics_settings.obs_metrics_public = False
	metrics_settings.obs_admin_token = "ops-secret"

	denied = await api_client.get("/metrics", headers={"X-Admin-Token": "wrong"})
	allowed = await api_client.get("/metrics", headers={"Authorization": "Bearer ops-secret"})

	assert denied.status_code == 403
	assert allowed.status_code == 200
	assert "circlehood_http_requests_total" in allowed.text
