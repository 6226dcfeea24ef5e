import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from generation_server import GenerationServer
from video_generation_client.models import (
    GenerationConfig,
    GenerationOutcome,
    ProviderCredentials,
)
from video_generation_client.video_generation_client import VideoGenerationClient

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[GenerationServer, None]:
    """Start and yield a test GenerationServer instance on a random port."""
    port = unused_tcp_port_factory()
    server_instance = GenerationServer(completion_time=0.2)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest.fixture
def config() -> GenerationConfig:
    """Provide a fast configuration for the client."""
    return GenerationConfig(
        retry_delay=0.05,
        poll_interval=0.05,
        max_poll_attempts=40,
        tick_interval=0.02,
    )


@pytest.fixture
def credentials() -> ProviderCredentials:
    return ProviderCredentials(api_key="test-key", group_id="test-group")


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_successful_generation(server, config, credentials):
    """Test normal successful completion flow."""
    server_instance, port = server
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)
    loading_changes = []
    client.state.is_loading.subscribe(loading_changes.append)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.succeeded
    assert result.video_url == "https://example.com/videos/file-123.mp4"
    assert result.task_id == "task-1"
    assert result.file_id == "file-123"
    assert result.attempts == 1
    assert result.total_seconds is not None

    state = client.state.snapshot()
    assert state.prompt == "a cat surfing"
    assert state.video_url == result.video_url
    assert state.error is None
    assert state.is_loading is False
    assert state.total_generation_seconds == result.total_seconds
    assert loading_changes == [True, False]

    assert server_instance.last_authorization == "Bearer test-key"
    assert server_instance.submit_calls == 1
    assert server_instance.status_calls > 1
    assert server_instance.retrieve_calls == 1


@pytest.mark.asyncio
async def test_backup_url_used_when_primary_empty(server, config, credentials):
    server_instance, port = server
    server_instance.download_url = ""
    server_instance.backup_download_url = "https://backup.example.com/f.mp4"
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a lighthouse at dusk")

    assert result.outcome == GenerationOutcome.succeeded
    assert result.video_url == "https://backup.example.com/f.mp4"


@pytest.mark.asyncio
async def test_missing_download_urls(server, config, credentials):
    server_instance, port = server
    server_instance.download_url = None
    server_instance.backup_download_url = ""
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a lighthouse at dusk")

    assert result.outcome == GenerationOutcome.failed
    assert "valid video download URL" in result.error
    assert result.total_seconds is None
    assert client.state.video_url.value is None
    assert client.state.total_generation_seconds.value is None


@pytest.mark.asyncio
async def test_retrieval_http_error(server, config, credentials):
    server_instance, port = server
    server_instance.retrieve_http_status = 503
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a lighthouse at dusk")

    assert result.outcome == GenerationOutcome.failed
    assert "HTTP 503" in result.error
    assert client.state.error.value == result.error
    assert server_instance.submit_calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "credentials,validator",
    [
        (ProviderCredentials(api_key="", group_id="test-group"), None),
        (ProviderCredentials(api_key="test-key", group_id="  "), None),
        (ProviderCredentials(api_key="test-key", group_id="test-group"), lambda c: False),
    ],
)
async def test_invalid_credentials_skip_network(server, config, credentials, validator):
    """Credential failures never reach the provider and consume no retries."""
    server_instance, port = server
    client = VideoGenerationClient(
        credentials,
        BASE_URL_TEMPLATE.format(port),
        config,
        credential_validator=validator,
    )

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert result.error.startswith("Invalid API credentials")
    assert result.attempts == 0
    assert server_instance.submit_calls == 0
    assert client.state.is_loading.value is False
    assert client.state.total_generation_seconds.value is None


@pytest.mark.asyncio
async def test_submission_retried_until_success(server, config, credentials):
    server_instance, port = server
    server_instance.submit_failures = 2
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.succeeded
    assert result.attempts == 3
    assert server_instance.submit_calls == 3


@pytest.mark.asyncio
async def test_submission_gives_up_after_three_retries(server, config, credentials):
    server_instance, port = server
    server_instance.submit_failures = 100
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "HTTP 500" in result.error
    assert "Failed after 3 retries." in result.error
    assert result.attempts == 4
    assert server_instance.submit_calls == 4
    assert server_instance.status_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["processing", "PENDING", "Preparing", "queueing"])
async def test_in_progress_statuses_keep_polling(server, config, credentials, status):
    server_instance, port = server
    server_instance.pending_status = status
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)
    errors = []
    client.state.error.subscribe(errors.append)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.succeeded
    assert server_instance.status_calls > 1
    assert errors == []


@pytest.mark.asyncio
async def test_success_without_file_id_is_malformed(server, config, credentials):
    server_instance, port = server
    server_instance.completion_time = 0.0
    server_instance.file_id = None
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "file ID is missing" in result.error
    assert result.video_url is None
    assert result.total_seconds is None
    assert server_instance.retrieve_calls == 0


@pytest.mark.asyncio
async def test_failed_status_stops_polling(server, config, credentials):
    """A failed status is terminal: no further polls and no resubmission."""
    server_instance, port = server
    server_instance.error_rate = 1.0
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "Status: Fail" in result.error
    assert server_instance.status_calls == 1
    assert server_instance.submit_calls == 1


@pytest.mark.asyncio
async def test_timeout_scenario(server, config, credentials):
    """Test timeout handling."""
    server_instance, port = server
    server_instance.completion_time = 30.0
    config.poll_interval = 0.001
    config.max_poll_attempts = 60
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.timed_out
    assert "timed out" in result.error
    assert server_instance.status_calls == 60
    assert client.state.is_loading.value is False
    assert client.state.total_generation_seconds.value is None


@pytest.mark.asyncio
async def test_server_unavailable(config, credentials, unused_tcp_port_factory):
    """Test behavior when server is not available."""
    port = unused_tcp_port_factory()
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "Network error (submit)" in result.error
    assert "Failed after 3 retries." in result.error
    assert client.state.is_loading.value is False


@pytest.mark.asyncio
async def test_new_job_stops_previous_timer(server, config, credentials):
    server_instance, port = server
    server_instance.completion_time = 30.0
    config.max_poll_attempts = 1000
    now = [100.0]
    client = VideoGenerationClient(
        credentials, BASE_URL_TEMPLATE.format(port), config, clock=lambda: now[0]
    )

    first = client.start_generation("first")
    await _wait_for(lambda: server_instance.status_calls >= 1)
    now[0] = 107.0
    await _wait_for(lambda: client.state.elapsed_seconds.value == 7)
    first_timer = client.timer

    second = client.start_generation("second")
    assert not first_timer.running
    assert first_timer.elapsed_seconds == 7

    now[0] = 120.0
    await _wait_for(lambda: client.state.elapsed_seconds.value == 13)
    assert first_timer.elapsed_seconds == 7
    assert first_timer.total_seconds is None

    first_result = await first
    assert first_result.outcome == GenerationOutcome.cancelled
    assert client.state.is_loading.value is True
    assert client.state.prompt.value == "second"

    await client.cancel()
    assert second.done()
    assert client.state.is_loading.value is False
    assert client.state.total_generation_seconds.value is None


@pytest.mark.asyncio
async def test_generate_video_reports_superseded_job(server, config, credentials):
    server_instance, port = server
    server_instance.completion_time = 30.0
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    pending = asyncio.create_task(client.generate_video("first"))
    await _wait_for(lambda: server_instance.status_calls >= 1)
    server_instance.completion_time = 0.0
    second = await client.generate_video("second")

    first = await pending
    assert first.outcome == GenerationOutcome.cancelled
    assert second.outcome == GenerationOutcome.succeeded
    assert client.state.video_url.value == second.video_url
    assert client.state.error.value is None


@pytest.mark.asyncio
async def test_submission_invalid_json_is_retried(server, config, credentials):
    """A 2xx submission body that is not JSON is a transient, retried failure."""
    server_instance, port = server
    server_instance.submit_invalid_json = True
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "Malformed submission response" in result.error
    assert "Failed after 3 retries." in result.error
    assert result.attempts == 4
    assert server_instance.submit_calls == 4
    assert server_instance.status_calls == 0
    assert client.state.error.value == result.error
    assert client.state.is_loading.value is False


@pytest.mark.asyncio
async def test_status_invalid_json_stops_polling(server, config, credentials):
    server_instance, port = server
    server_instance.status_invalid_json = True
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "Malformed status response" in result.error
    assert server_instance.status_calls == 1
    assert server_instance.submit_calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("http_status", [404, 304])
async def test_status_http_error_stops_polling(server, config, credentials, http_status):
    """Any non-2xx status answer is terminal: no further polls and no resubmission."""
    server_instance, port = server
    server_instance.status_http_status = http_status
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert f"Error polling status (HTTP {http_status})" in result.error
    assert server_instance.status_calls == 1
    assert server_instance.submit_calls == 1
    assert server_instance.retrieve_calls == 0
    assert client.state.total_generation_seconds.value is None


@pytest.mark.asyncio
async def test_success_status_requires_success_message(server, config, credentials):
    """Success paired with a processing message keeps polling until attempts run out."""
    server_instance, port = server
    server_instance.completion_time = 0.0
    server_instance.final_status_msg = "processing"
    config.poll_interval = 0.001
    config.max_poll_attempts = 10
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.timed_out
    assert server_instance.status_calls == 10
    assert server_instance.retrieve_calls == 0


@pytest.mark.asyncio
async def test_success_status_with_error_message_fails(server, config, credentials):
    server_instance, port = server
    server_instance.completion_time = 0.0
    server_instance.final_status_msg = "invalid params"
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert "Message: invalid params" in result.error
    assert server_instance.status_calls == 1


@pytest.mark.asyncio
async def test_retrieval_rejected_status_message(server, config, credentials):
    server_instance, port = server
    server_instance.retrieve_status_msg = "file not found"
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert result.error == "Error retrieving video file: file not found"
    assert server_instance.retrieve_calls == 1
    assert client.state.video_url.value is None


@pytest.mark.asyncio
async def test_retrieval_without_file_object(server, config, credentials):
    server_instance, port = server
    server_instance.retrieve_omit_file = True
    client = VideoGenerationClient(credentials, BASE_URL_TEMPLATE.format(port), config)

    result = await client.generate_video("a cat surfing")

    assert result.outcome == GenerationOutcome.failed
    assert result.error == "Error retrieving video file: response has no file."
    assert result.total_seconds is None
    assert client.state.is_loading.value is False
