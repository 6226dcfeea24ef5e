import random
from datetime import datetime
from typing import Dict, Optional

from aiohttp import web
from loguru import logger


class GenerationServer:
    """Local stand-in for the video generation provider, used by the tests and the demo"""

    def __init__(
        self,
        completion_time: float = 10.0,
        error_rate: float = 0.0,
        submit_failures: int = 0,
        pending_status: str = "Processing",
        final_status: str = "Success",
        file_id: Optional[str] = "file-123",
        download_url: Optional[str] = "example.com/videos/file-123.mp4?token=abc",
        backup_download_url: Optional[str] = None,
        retrieve_http_status: int = 200,
        final_status_msg: str = "success",
        status_http_status: int = 200,
        retrieve_status_msg: str = "success",
        retrieve_omit_file: bool = False,
        submit_invalid_json: bool = False,
        status_invalid_json: bool = False,
    ):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.submit_failures = submit_failures
        self.pending_status = pending_status
        self.final_status = final_status
        self.file_id = file_id
        self.download_url = download_url
        self.backup_download_url = backup_download_url
        self.retrieve_http_status = retrieve_http_status
        self.final_status_msg = final_status_msg
        self.status_http_status = status_http_status
        self.retrieve_status_msg = retrieve_status_msg
        self.retrieve_omit_file = retrieve_omit_file
        self.submit_invalid_json = submit_invalid_json
        self.status_invalid_json = status_invalid_json

        self.submit_calls = 0
        self.status_calls = 0
        self.retrieve_calls = 0
        self.last_authorization: Optional[str] = None
        self.tasks: Dict[str, datetime] = {}
        self.runner: Optional[web.AppRunner] = None

        self.app = web.Application()
        self.app.router.add_post("/v1/video_generation", self.handle_submit)
        self.app.router.add_get("/v1/query/video_generation", self.handle_status)
        self.app.router.add_get("/v1/files/retrieve", self.handle_retrieve)
        self.logger = logger

    async def handle_submit(self, request):
        self.submit_calls += 1
        self.last_authorization = request.headers.get("Authorization")

        if self.submit_calls <= self.submit_failures:
            self.logger.info("Returning submission failure")
            return web.json_response({"error": "overloaded"}, status=500)

        if self.submit_invalid_json:
            return web.Response(text="{not json", content_type="application/json")

        body = await request.json()
        task_id = f"task-{self.submit_calls}"
        self.tasks[task_id] = datetime.now()
        self.logger.info(f"Accepted {body['model']} job {task_id}")
        return web.json_response(
            {"task_id": task_id, "base_resp": {"status_code": 0, "status_msg": "success"}}
        )

    async def handle_status(self, request):
        self.status_calls += 1
        task_id = request.query.get("task_id", "")
        started = self.tasks.get(task_id)
        if started is None:
            return web.json_response({"error": "unknown task"}, status=404)

        if self.status_http_status != 200:
            return web.Response(status=self.status_http_status)
        if self.status_invalid_json:
            return web.Response(text="{not json", content_type="application/json")

        if random.random() < self.error_rate:
            self.logger.info("Returning error status")
            return web.json_response(
                {"task_id": task_id, "status": "Fail", "base_resp": {"status_msg": "failed"}}
            )

        elapsed = (datetime.now() - started).total_seconds()
        if elapsed >= self.completion_time:
            self.logger.info(f"Returning {self.final_status} status")
            return web.json_response(
                {
                    "task_id": task_id,
                    "status": self.final_status,
                    "file_id": self.file_id,
                    "base_resp": {"status_code": 0, "status_msg": self.final_status_msg},
                }
            )

        self.logger.info(f"Returning {self.pending_status} status (elapsed: {elapsed:.1f}s)")
        return web.json_response(
            {
                "task_id": task_id,
                "status": self.pending_status,
                "file_id": "",
                "base_resp": {"status_code": 0, "status_msg": "success"},
            }
        )

    async def handle_retrieve(self, request):
        self.retrieve_calls += 1
        if self.retrieve_http_status >= 400:
            return web.Response(status=self.retrieve_http_status, text="retrieval failed")

        body = {"base_resp": {"status_code": 0, "status_msg": self.retrieve_status_msg}}
        if not self.retrieve_omit_file:
            body["file"] = {
                "file_id": request.query.get("file_id"),
                "filename": "output.mp4",
                "download_url": self.download_url,
                "backup_download_url": self.backup_download_url,
            }
        return web.json_response(body)

    async def start(self, port: int = 8080):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        self.runner = runner
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
