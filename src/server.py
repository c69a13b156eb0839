import json
import logging
import os
import shutil
import signal
import sys
from enum import Enum
from pathlib import Path
from typing import Optional, Annotated, Union

from fastmcp import FastMCP, Context
from fastmcp.exceptions import ToolError
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from client.downloads import download_images
from client.hidream import HiDream
from client.models import GenerationRequest, ImageSize, ImageSizePreset, LoraWeight, OutputFormat
from formatting import (
    MODEL_NAME,
    format_generation_response,
    format_queue_result,
    format_queue_status,
    format_queue_submission,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "hidream-i1-full"
MISSING_KEY_MESSAGE = "Error: FAL_KEY environment variable is not set. Please configure your fal.ai API key."


class MCPTransport(str, Enum):
    stdio = "stdio"
    sse = "sse"
    http = "http"


class ServerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="mcp_", env_file=".env", extra='ignore')

    host: str = "0.0.0.0"
    port: int = 8000
    transport: MCPTransport = MCPTransport.stdio
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: ServerSettings):
    """Configure logging based on settings."""
    numeric_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(settings.log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    # StreamHandler writes to stderr; stdout carries the stdio protocol
    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


PromptArg = Annotated[str, Field(description="The prompt to generate an image from")]
NegativePromptArg = Annotated[str, Field(description="The negative prompt to use. Use it to address details that you don't want in the image")]
ImageSizeArg = Annotated[Union[ImageSizePreset, ImageSize], Field(description="The size of the generated image. Can be a predefined size or custom width/height")]
StepsArg = Annotated[int, Field(description="The number of inference steps to perform", ge=1, le=100)]
SeedArg = Annotated[Optional[int], Field(description="The same seed and the same prompt given to the same version of the model will output the same image every time")]
GuidanceArg = Annotated[float, Field(description="The CFG (Classifier Free Guidance) scale is a measure of how close you want the model to stick to your prompt", ge=1, le=20)]
NumImagesArg = Annotated[int, Field(description="The number of images to generate", ge=1, le=4)]
SafetyArg = Annotated[bool, Field(description="If set to true, the safety checker will be enabled")]
OutputFormatArg = Annotated[OutputFormat, Field(description="The format of the generated image")]
LorasArg = Annotated[Optional[list[LoraWeight]], Field(description="A list of LoRAs to apply to the model")]
RequestIdArg = Annotated[str, Field(description="The request ID returned from the queue submission")]


def create_server(hidream: HiDream) -> FastMCP:
    """Build the MCP server exposing the HiDream tools.

    Args:
        hidream: Client configured once at startup. When it has no credential,
            every tool fails fast without touching the network.

    Returns:
        FastMCP: Server with the generate, stream, queue, status and result tools registered.
    """
    mcp = FastMCP(SERVER_NAME)
    image_dir = hidream.settings.image_dir

    def require_credentials():
        if not hidream.configured:
            logger.error("Tool called without FAL_KEY configured")
            raise ToolError(MISSING_KEY_MESSAGE)

    @mcp.tool(name="hidream_i1_full_generate")
    async def generate(
            prompt: PromptArg,
            negative_prompt: NegativePromptArg = "",
            image_size: ImageSizeArg = ImageSize(),
            num_inference_steps: StepsArg = 50,
            seed: SeedArg = None,
            guidance_scale: GuidanceArg = 5,
            sync_mode: Annotated[bool, Field(description="If set to true, the function will wait for the image to be generated and uploaded before returning the response")] = True,
            num_images: NumImagesArg = 1,
            enable_safety_checker: SafetyArg = True,
            output_format: OutputFormatArg = OutputFormat.jpeg,
            loras: LorasArg = None,
    ) -> str:
        """Generate high-quality images using fal-ai/hidream-i1-full - Advanced image generation model with superior quality and detail"""
        require_credentials()
        logger.info(f"hidream_i1_full_generate called with prompt='{prompt[:50]}', num_images={num_images}, seed={seed}")
        try:
            request = GenerationRequest(
                prompt=prompt,
                negative_prompt=negative_prompt,
                image_size=image_size,
                num_inference_steps=num_inference_steps,
                seed=seed,
                guidance_scale=guidance_scale,
                sync_mode=sync_mode,
                num_images=num_images,
                enable_safety_checker=enable_safety_checker,
                output_format=output_format,
                loras=tuple(loras or ()),
            )
            result = await hidream.subscribe(request)
            logger.info("Downloading images locally...")
            images = await download_images(result, request.prompt, image_dir, request.file_extension)
            return format_generation_response(request, result, images, directory=image_dir)
        except Exception as e:
            logger.error(f"Error generating image: {str(e)}", exc_info=True)
            raise ToolError(f"Failed to generate image with {MODEL_NAME}. Error: {str(e)}")

    @mcp.tool(name="hidream_i1_full_generate_stream")
    async def generate_stream(
            ctx: Context,
            prompt: PromptArg,
            negative_prompt: NegativePromptArg = "",
            image_size: ImageSizeArg = ImageSize(),
            num_inference_steps: StepsArg = 50,
            seed: SeedArg = None,
            guidance_scale: GuidanceArg = 5,
            num_images: NumImagesArg = 1,
            enable_safety_checker: SafetyArg = True,
            output_format: OutputFormatArg = OutputFormat.jpeg,
            loras: LorasArg = None,
    ) -> str:
        """Generate images using fal-ai/hidream-i1-full with streaming for real-time progress updates"""
        require_credentials()
        logger.info(f"hidream_i1_full_generate_stream called with prompt='{prompt[:50]}', num_images={num_images}, seed={seed}")
        try:
            request = GenerationRequest(
                prompt=prompt,
                negative_prompt=negative_prompt,
                image_size=image_size,
                num_inference_steps=num_inference_steps,
                seed=seed,
                guidance_scale=guidance_scale,
                sync_mode=False,
                num_images=num_images,
                enable_safety_checker=enable_safety_checker,
                output_format=output_format,
                loras=tuple(loras or ()),
            )

            # Events are forwarded as they arrive; only the count and the final output are kept
            event_count = 0
            final_event = None
            async for event in hidream.stream(request):
                event_count += 1
                logger.debug(f"Stream event {event_count}: {json.dumps(event, default=str)[:200]}")
                await ctx.report_progress(event_count)
                await ctx.debug(f"Stream event {event_count} received")
                if isinstance(event, dict) and "images" in event:
                    final_event = event

            if final_event is None:
                raise RuntimeError(f"Stream ended after {event_count} event(s) without returning images")

            result = HiDream.parse_result(final_event, final_event.get("request_id"))
            logger.info("Downloading images locally...")
            images = await download_images(result, request.prompt, image_dir, request.file_extension)
            return format_generation_response(request, result, images, stream_events=event_count, directory=image_dir)
        except Exception as e:
            logger.error(f"Error generating image with streaming: {str(e)}", exc_info=True)
            raise ToolError(f"Failed to generate image with {MODEL_NAME} (Streaming). Error: {str(e)}")

    @mcp.tool(name="hidream_i1_full_generate_queue")
    async def generate_queue(
            prompt: PromptArg,
            negative_prompt: NegativePromptArg = "",
            image_size: ImageSizeArg = ImageSize(),
            num_inference_steps: StepsArg = 50,
            seed: SeedArg = None,
            guidance_scale: GuidanceArg = 5,
            num_images: NumImagesArg = 1,
            enable_safety_checker: SafetyArg = True,
            output_format: OutputFormatArg = OutputFormat.jpeg,
            loras: LorasArg = None,
            webhook_url: Annotated[Optional[str], Field(description="Optional webhook URL for result notifications")] = None,
    ) -> str:
        """Generate images using fal-ai/hidream-i1-full with queue method for long-running requests and webhook support"""
        require_credentials()
        logger.info(f"hidream_i1_full_generate_queue called with prompt='{prompt[:50]}', webhook_url={webhook_url}")
        try:
            request = GenerationRequest(
                prompt=prompt,
                negative_prompt=negative_prompt,
                image_size=image_size,
                num_inference_steps=num_inference_steps,
                seed=seed,
                guidance_scale=guidance_scale,
                sync_mode=False,
                num_images=num_images,
                enable_safety_checker=enable_safety_checker,
                output_format=output_format,
                loras=tuple(loras or ()),
                webhook_url=webhook_url,
            )
            request_id = await hidream.submit(request)
            return format_queue_submission(request, request_id)
        except Exception as e:
            logger.error(f"Error submitting queue request: {str(e)}", exc_info=True)
            raise ToolError(f"Failed to submit image generation request to {MODEL_NAME} queue. Error: {str(e)}")

    @mcp.tool(name="hidream_i1_full_queue_status")
    async def queue_status(
            request_id: RequestIdArg,
            logs: Annotated[bool, Field(description="Whether to include logs in the response")] = True,
    ) -> str:
        """Check the status of a queued image generation request"""
        require_credentials()
        logger.info(f"Checking status for request: {request_id}")
        try:
            status = await hidream.status(request_id, with_logs=logs)
            return format_queue_status(status)
        except Exception as e:
            logger.error(f"Error checking queue status: {str(e)}", exc_info=True)
            raise ToolError(f"Failed to check queue status. Error: {str(e)}")

    @mcp.tool(name="hidream_i1_full_queue_result")
    async def queue_result(request_id: RequestIdArg) -> str:
        """Get the result of a completed queued image generation request"""
        require_credentials()
        logger.info(f"Getting result for request: {request_id}")
        try:
            result = await hidream.result(request_id)
            logger.info("Downloading images locally...")
            images = await download_images(result, result.prompt or "generated", image_dir)
            return format_queue_result(request_id, result, images, directory=image_dir)
        except Exception as e:
            logger.error(f"Error getting queue result: {str(e)}", exc_info=True)
            raise ToolError(f"Failed to get queue result. Error: {str(e)}")

    return mcp


def handle_shutdown(signum, frame):
    """Exit immediately on SIGINT/SIGTERM; in-flight requests are not drained."""
    logger.info(f"Received {signal.Signals(signum).name}, shutting down gracefully...")
    logging.shutdown()
    os._exit(0)


def print_client_config():
    """Print an MCP client configuration snippet for this server."""
    command = shutil.which("hidream-mcp-server") or "hidream-mcp-server"
    config = {
        "mcpServers": {
            SERVER_NAME: {
                "command": command,
                "args": [],
                "env": {
                    "FAL_KEY": "YOUR_FAL_KEY_HERE",
                },
            }
        }
    }
    print(json.dumps(config, indent=2))
    print()
    print("Available tools:")
    print("  hidream_i1_full_generate - Generate images and wait for the result")
    print("  hidream_i1_full_generate_stream - Generate images with streamed progress")
    print("  hidream_i1_full_generate_queue - Submit a generation to the queue")
    print("  hidream_i1_full_queue_status - Check a queued request")
    print("  hidream_i1_full_queue_result - Fetch and download a queued request's images")
    print()
    print("Get your API key from https://fal.ai/ and replace YOUR_FAL_KEY_HERE with it.")


def main():
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    try:
        settings = ServerSettings()
        setup_logging(settings)
        mcp = create_server(HiDream())
        logger.info(f"{MODEL_NAME} MCP server running on {settings.transport.value}")
        if settings.transport == MCPTransport.stdio:
            mcp.run(transport="stdio")
        else:
            mcp.run(transport=settings.transport.value, host=settings.host, port=settings.port)
    except Exception:
        logger.critical("Fatal error in main()", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
