import asyncio

from generation_server import GenerationServer
from video_generation_client.models import GenerationConfig, ProviderCredentials
from video_generation_client.video_generation_client import VideoGenerationClient


def elapsed_changed(seconds):
    print(f"Elapsed time: {seconds}s")


async def main():
    PORT = 8000
    server = GenerationServer(completion_time=12.0, submit_failures=1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = GenerationConfig(poll_interval=2.0, retry_delay=1.0, max_poll_attempts=20)
    credentials = ProviderCredentials(api_key="demo-key", group_id="demo-group")

    client = VideoGenerationClient(credentials, f"http://localhost:{PORT}", config)
    client.state.elapsed_seconds.subscribe(elapsed_changed)

    try:
        result = await client.generate_video("A paper boat drifting down a rainy street")
        print(f"Final outcome: {result.outcome.value}")
        if result.succeeded:
            print(f"Video URL: {result.video_url}")
            print(f"Total time: {result.total_seconds}s")
        else:
            print(f"Error: {result.error}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
