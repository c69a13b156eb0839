"""Text builders for the tool responses returned to MCP callers."""
from __future__ import annotations

from typing import Optional

from client.models import DownloadedImage, GenerationRequest, GenerationResult, QueueState, QueueStatus

MODEL_NAME = "fal-ai/hidream-i1-full"
STATUS_TOOL = "hidream_i1_full_queue_status"
RESULT_TOOL = "hidream_i1_full_queue_result"


def format_image_details(images: list[DownloadedImage]) -> str:
    blocks = []
    for img in images:
        details = [f"Image {img.index}:"]
        if img.local_path:
            details.append(f"  Local Path: {img.local_path}")
        details.append(f"  Original URL: {img.url}")
        details.append(f"  Filename: {img.filename}")
        details.append(f"  Dimensions: {img.width}x{img.height}")
        details.append(f"  Content Type: {img.content_type}")
        blocks.append("\n".join(details))
    return "\n\n".join(blocks)


def format_download_footer(images: list[DownloadedImage], directory: str = "images") -> str:
    if any(img.local_path for img in images):
        return f"Images have been downloaded to the local '{directory}' directory."
    return "Note: Local download failed, but original URLs are available."


def format_request_summary(request: GenerationRequest, seed: Optional[int]) -> list[str]:
    lines = [f'Prompt: "{request.prompt}"']
    if request.negative_prompt:
        lines.append(f'Negative Prompt: "{request.negative_prompt}"')
    lines.append(f"Image Size: {request.image_size_label}")
    lines.append(f"Inference Steps: {request.num_inference_steps}")
    lines.append(f"Guidance Scale: {request.guidance_scale:g}")
    lines.append(f"Output Format: {request.output_format.value}")
    lines.append(f"Seed: {seed}" if seed is not None else "Seed: Auto-generated")
    if request.loras:
        lines.append(f"LoRAs: {len(request.loras)} applied")
    return lines


def format_generation_response(
        request: GenerationRequest,
        result: GenerationResult,
        images: list[DownloadedImage],
        stream_events: Optional[int] = None,
        directory: str = "images",
) -> str:
    """Summarize a finished generation.

    Args:
        request: Parameters the caller asked for.
        result: Output returned by the service.
        images: One download record per image in ``result``.
        stream_events: Number of stream events received, for streamed generations only.
        directory: Directory the images were downloaded to.

    Returns:
        str: Human-readable summary for the calling agent.
    """
    mode = " (Streaming)" if stream_events is not None else ""
    lines = [f"Successfully generated {len(images)} image(s) using {MODEL_NAME}{mode}:", ""]
    lines.extend(format_request_summary(request, result.seed))
    if result.request_id:
        lines.append(f"Request ID: {result.request_id}")
    if stream_events is not None:
        lines.append(f"Stream Events: {stream_events} received")
    lines.extend(["", "Generated Images:", format_image_details(images), "", format_download_footer(images, directory)])
    return "\n".join(lines)


def format_queue_submission(request: GenerationRequest, request_id: str) -> str:
    lines = [f"Successfully submitted image generation request to {MODEL_NAME} queue:", "", f"Request ID: {request_id}"]
    lines.extend(format_request_summary(request, request.seed))
    if request.webhook_url:
        lines.append(f"Webhook URL: {request.webhook_url}")
    lines.extend([
        "",
        f"Use the '{STATUS_TOOL}' tool with request ID '{request_id}' to check the status.",
        f"Use the '{RESULT_TOOL}' tool with request ID '{request_id}' to get the result when completed.",
    ])
    return "\n".join(lines)


def format_queue_status(status: QueueStatus) -> str:
    lines = [f"Queue Status for Request {status.request_id}:", "", f"Status: {status.status.value}"]
    if status.queue_position is not None:
        lines.append(f"Queue Position: {status.queue_position}")
    if status.error:
        lines.append(f"Error: {status.error}")
    if status.logs:
        lines.extend(["", "Logs:"])
        lines.extend(f"[{log.timestamp}] {log.message}" for log in status.logs)

    hints = {
        QueueState.completed: f"Request completed! Use '{RESULT_TOOL}' tool to get the results.",
        QueueState.failed: "Request failed. Check the logs above for error details.",
        QueueState.in_progress: "Request is still processing. Check again in a few moments.",
        QueueState.queued: "Request is waiting in the queue. Check again in a few moments.",
    }
    lines.extend(["", hints[status.status]])
    return "\n".join(lines)


def format_queue_result(
        request_id: str,
        result: GenerationResult,
        images: list[DownloadedImage],
        directory: str = "images",
) -> str:
    lines = [f"Successfully retrieved result for request {request_id}:", "", f"Request ID: {result.request_id or request_id}"]
    if result.prompt:
        lines.append(f'Prompt: "{result.prompt}"')
    if result.seed is not None:
        lines.append(f"Seed: {result.seed}")
    lines.extend(["", "Generated Images:", format_image_details(images), "", format_download_footer(images, directory)])
    return "\n".join(lines)
