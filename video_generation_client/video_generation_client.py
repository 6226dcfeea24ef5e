import asyncio
from typing import Any, Callable, Optional, Tuple

import aiohttp
from loguru import logger
from pydantic import ValidationError
from video_generation_client.api import VideoGenerationApi
from video_generation_client.errors import (
    CredentialError,
    GenerationError,
    GenerationTimeoutError,
    MalformedResponseError,
    PollError,
    ProviderHTTPError,
    RetrievalError,
    SubmissionError,
)
from video_generation_client.models import (
    GenerationConfig,
    GenerationOutcome,
    GenerationRequest,
    GenerationResult,
    JobStatus,
    ProviderCredentials,
)
from video_generation_client.retry import RetryPolicy
from video_generation_client.state import GenerationState, Observable
from video_generation_client.timing import TimingTracker
from video_generation_client.urls import pick_download_url

DEFAULT_BASE_URL = "https://api.minimaxi.chat"

NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)
MALFORMED_ERRORS = (MalformedResponseError, ValidationError)


class VideoGenerationClient:
    """Runs one text-to-video job at a time: submit, poll until terminal, resolve the download URL.

    Progress and outcome are published through ``self.state``. Starting a new
    job cancels the previous one; a superseded job never writes to the state.
    """

    def __init__(
        self,
        credentials: ProviderCredentials,
        base_url: str = DEFAULT_BASE_URL,
        config: Optional[GenerationConfig] = None,
        credential_validator: Optional[Callable[[ProviderCredentials], bool]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.config = config or GenerationConfig()
        self.credential_validator = (
            credential_validator or ProviderCredentials.validate_credentials
        )
        self.clock = clock
        self.logger = logger
        self.state = GenerationState()
        self.retry_policy = RetryPolicy(
            max_retries=self.config.max_submit_retries, delay=self.config.retry_delay
        )

        self._generation = 0
        self._job_task: Optional[asyncio.Task] = None
        self._timer: Optional[TimingTracker] = None

    @property
    def timer(self) -> Optional[TimingTracker]:
        return self._timer

    @property
    def job_task(self) -> Optional[asyncio.Task]:
        return self._job_task

    def set_prompt(self, prompt: str) -> None:
        self.state.prompt.set(prompt)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _publish(self, generation: int, observable: Observable, value: Any) -> None:
        if self._is_current(generation):
            observable.set(value)

    def _supersede_active_job(self) -> None:
        """Invalidates the active job and cancels its poll and timer tasks"""
        self._generation += 1
        if self._timer is not None:
            self._timer.stop(success=False)
        if self._job_task is not None and not self._job_task.done():
            self.logger.info("Cancelling in-flight generation job")
            self._job_task.cancel()

    def start_generation(self, prompt: Optional[str] = None) -> asyncio.Task:
        """Starts a new job for the current prompt and returns the task running it"""
        if prompt is not None:
            self.set_prompt(prompt)
        self._supersede_active_job()
        generation = self._generation

        request = GenerationRequest(prompt=self.state.prompt.value, model=self.config.model)
        self.logger.info(f"Starting video generation with prompt: {request.prompt!r}")

        self.state.is_loading.set(True)
        self.state.error.set(None)
        self.state.video_url.set(None)

        self._timer = TimingTracker(
            tick_interval=self.config.tick_interval,
            clock=self.clock,
            on_elapsed=lambda s: self._publish(generation, self.state.elapsed_seconds, s),
            on_total=lambda s: self._publish(
                generation, self.state.total_generation_seconds, s
            ),
        )
        self._timer.start()
        self._job_task = asyncio.create_task(
            self._run_job(generation, request, self._timer)
        )
        return self._job_task

    async def generate_video(self, prompt: Optional[str] = None) -> GenerationResult:
        """Starts a job and waits for its terminal result"""
        task = self.start_generation(prompt)
        generation = self._generation
        try:
            return await task
        except asyncio.CancelledError:
            if self._is_current(generation):
                raise
            return GenerationResult(
                outcome=GenerationOutcome.cancelled,
                error="Superseded by a newer generation job.",
            )

    async def cancel(self) -> None:
        """Cancels the active job, if any, and clears the loading flag"""
        task = self._job_task
        if task is None or task.done():
            return
        self._supersede_active_job()
        self.state.is_loading.set(False)
        await asyncio.gather(task, return_exceptions=True)

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.request_timeout)

    async def _run_job(
        self, generation: int, request: GenerationRequest, timer: TimingTracker
    ) -> GenerationResult:
        success = False
        task_id: Optional[str] = None
        file_id: Optional[str] = None
        attempts = 0
        try:
            if not self.credential_validator(self.credentials):
                raise CredentialError(
                    "Invalid API credentials. Please check your API key and Group ID."
                )

            async with aiohttp.ClientSession(timeout=self._client_timeout()) as session:
                api = VideoGenerationApi(session, self.base_url, self.credentials)
                task_id, attempts = await self._submit_with_retries(api, request)
                file_id = await self._poll_until_complete(api, task_id)
                video_url = await self._retrieve_download_url(api, file_id)

            success = True
            self.logger.info(f"Final processed video URL: {video_url}")
            self._publish(generation, self.state.video_url, video_url)
            self._publish(generation, self.state.error, None)
            outcome = GenerationOutcome.succeeded
            error_message = None
        except GenerationError as e:
            if isinstance(e, SubmissionError):
                attempts = e.attempts
            outcome = (
                GenerationOutcome.timed_out
                if isinstance(e, GenerationTimeoutError)
                else GenerationOutcome.failed
            )
            error_message = e.message
            video_url = None
            self.logger.error(f"Video generation failed: {error_message}")
            self._publish(generation, self.state.error, error_message)
        except asyncio.CancelledError:
            if self._is_current(generation):
                raise
            self.logger.info("Generation job superseded before completion")
            outcome = GenerationOutcome.cancelled
            error_message = "Superseded by a newer generation job."
            video_url = None
        finally:
            timer.stop(success)
            if self._is_current(generation):
                self.state.is_loading.set(False)

        return GenerationResult(
            outcome=outcome,
            video_url=video_url,
            error=error_message,
            task_id=task_id,
            file_id=file_id,
            attempts=attempts,
            total_seconds=timer.total_seconds,
        )

    async def _submit_with_retries(
        self, api: VideoGenerationApi, request: GenerationRequest
    ) -> Tuple[str, int]:
        """Submits the request, retrying transient failures; returns the task id and attempts made"""
        retries = 0
        while True:
            attempt = retries + 1
            self.logger.debug(
                f"Sending video generation request, attempt "
                f"{attempt}/{self.retry_policy.max_retries + 1}"
            )
            try:
                response = await api.submit(request)
                if response.task_id:
                    self.logger.info(f"Task ID received: {response.task_id}. Polling video status.")
                    return response.task_id, attempt
                error = SubmissionError(
                    f"Task ID not received from generation API: "
                    f"{response.base_resp.status_msg or 'empty response'}",
                    attempts=attempt,
                )
            except ProviderHTTPError as e:
                error = SubmissionError(
                    f"Error generating video (HTTP {e.status}): {e.body}", attempts=attempt
                )
            except NETWORK_ERRORS as e:
                error = SubmissionError(f"Network error (submit): {e}", attempts=attempt)
            except MALFORMED_ERRORS as e:
                error = SubmissionError(f"Malformed submission response: {e}", attempts=attempt)

            decision = self.retry_policy.decide(error, retries)
            if not decision.retry:
                raise self.retry_policy.give_up(error, retries)
            retries += 1
            await asyncio.sleep(decision.delay)

    async def _poll_until_complete(self, api: VideoGenerationApi, task_id: str) -> str:
        """Polls the status endpoint on a fixed interval until the job succeeds, fails or times out"""
        log = self.logger.bind(task_id=task_id)
        max_attempts = self.config.max_poll_attempts
        attempt = 0

        while attempt < max_attempts:
            log.debug(f"Polling attempt {attempt + 1}/{max_attempts} for task {task_id}")
            try:
                status_response = await api.query_status(task_id)
            except ProviderHTTPError as e:
                raise PollError(f"Error polling status (HTTP {e.status}): {e.body}") from e
            except NETWORK_ERRORS as e:
                raise PollError(f"Network error (polling): {e}") from e
            except MALFORMED_ERRORS as e:
                raise PollError(f"Malformed status response: {e}") from e

            status = status_response.job_status
            if status == JobStatus.succeeded:
                if status_response.file_id:
                    log.info(f"Polling successful. File ID: {status_response.file_id}")
                    return status_response.file_id
                raise PollError("Polling successful, but file ID is missing.")
            if status == JobStatus.failed:
                raise PollError(
                    f"Video generation failed or encountered an error during polling: "
                    f"Status: {status_response.status}, "
                    f"Message: {status_response.base_resp.status_msg}"
                )

            log.debug(
                f"Video still {status.value}. Status: {status_response.status}, "
                f"Message: {status_response.base_resp.status_msg}"
            )
            attempt += 1
            if attempt < max_attempts:
                await asyncio.sleep(self.config.poll_interval)

        log.warning(f"Video generation timed out after {max_attempts} attempts")
        raise GenerationTimeoutError(
            f"Video generation timed out after {max_attempts} polling attempts."
        )

    async def _retrieve_download_url(self, api: VideoGenerationApi, file_id: str) -> str:
        self.logger.debug(f"Retrieving video file {file_id}")
        try:
            response = await api.retrieve_file(file_id)
        except ProviderHTTPError as e:
            raise RetrievalError(
                f"Error retrieving video file (HTTP {e.status}): {e.body or 'Unknown error'}"
            ) from e
        except NETWORK_ERRORS as e:
            raise RetrievalError(f"Network error (retrieve file): {e}") from e
        except MALFORMED_ERRORS as e:
            raise RetrievalError(f"Malformed retrieval response: {e}") from e

        if response.base_resp.status_msg != "success":
            raise RetrievalError(
                f"Error retrieving video file: "
                f"{response.base_resp.status_msg or 'Unknown error'}"
            )
        if response.file is None:
            raise RetrievalError("Error retrieving video file: response has no file.")

        video_url = pick_download_url(response.file)
        if video_url is None:
            raise RetrievalError("Failed to get a valid video download URL from API.")
        return video_url
