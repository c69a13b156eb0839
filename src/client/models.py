from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union, Annotated

from pydantic import BaseModel, ConfigDict, Field


class ImageSizePreset(str, Enum):
    square_hd = "square_hd"
    square = "square"
    portrait_4_3 = "portrait_4_3"
    portrait_16_9 = "portrait_16_9"
    landscape_4_3 = "landscape_4_3"
    landscape_16_9 = "landscape_16_9"


class OutputFormat(str, Enum):
    jpeg = "jpeg"
    png = "png"


class ImageSize(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: Annotated[int, Field(description="The width of the generated image", ge=1)] = 1024
    height: Annotated[int, Field(description="The height of the generated image", ge=1)] = 1024


class LoraWeight(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Annotated[str, Field(description="URL or the path to the LoRA weights")]
    weight_name: Annotated[Optional[str], Field(description="Name of the LoRA weight. Used only if path is a Hugging Face repository")] = None
    scale: Annotated[float, Field(description="The scale of the LoRA weight")] = 1.0


class GenerationRequest(BaseModel):
    """Parameters of one generation call, with the model's documented defaults."""
    model_config = ConfigDict(frozen=True)

    prompt: str
    negative_prompt: str = ""
    image_size: Union[ImageSizePreset, ImageSize] = ImageSize()
    num_inference_steps: Annotated[int, Field(ge=1, le=100)] = 50
    seed: Optional[int] = None
    guidance_scale: Annotated[float, Field(ge=1, le=20)] = 5
    num_images: Annotated[int, Field(ge=1, le=4)] = 1
    enable_safety_checker: bool = True
    output_format: OutputFormat = OutputFormat.jpeg
    loras: tuple[LoraWeight, ...] = ()
    sync_mode: bool = True
    webhook_url: Optional[str] = None

    @property
    def image_size_label(self) -> str:
        if isinstance(self.image_size, ImageSizePreset):
            return self.image_size.value
        return f"{self.image_size.width}x{self.image_size.height}"

    @property
    def file_extension(self) -> str:
        return "png" if self.output_format == OutputFormat.png else "jpg"

    def to_arguments(self, sync_mode: Optional[bool] = None) -> dict[str, Any]:
        """Build the argument payload sent to the fal application.

        Args:
            sync_mode: Overrides the request's own sync_mode (stream and queue calls force False).

        Returns:
            dict: JSON-serializable model arguments. The webhook URL is not part of them.
        """
        if isinstance(self.image_size, ImageSizePreset):
            image_size: Any = self.image_size.value
        else:
            image_size = self.image_size.model_dump()

        arguments: dict[str, Any] = {
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "image_size": image_size,
            "num_inference_steps": self.num_inference_steps,
            "guidance_scale": self.guidance_scale,
            "sync_mode": self.sync_mode if sync_mode is None else sync_mode,
            "num_images": self.num_images,
            "enable_safety_checker": self.enable_safety_checker,
            "output_format": self.output_format.value,
            "loras": [lora.model_dump(exclude_none=True) for lora in self.loras],
        }
        # Seed 0 is a valid seed, only an absent seed is left to the service
        if self.seed is not None:
            arguments["seed"] = self.seed
        return arguments


class RemoteImage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: Optional[str] = None


class GenerationResult(BaseModel):
    """Output of the fal application, plus the request id it was served under."""
    model_config = ConfigDict(extra="ignore")

    images: list[RemoteImage] = Field(default_factory=list)
    seed: Optional[int] = None
    prompt: Optional[str] = None
    request_id: Optional[str] = None


class DownloadedImage(BaseModel):
    index: int
    filename: str
    url: str
    local_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: Optional[str] = None


class QueueState(str, Enum):
    queued = "QUEUED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    failed = "FAILED"


class QueueLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""
    timestamp: Optional[str] = None


class QueueStatus(BaseModel):
    request_id: str
    status: QueueState
    queue_position: Optional[int] = None
    logs: list[QueueLog] = Field(default_factory=list)
    error: Optional[str] = None
