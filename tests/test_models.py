"""Test generation request defaults and argument building"""
import unittest

from pydantic import ValidationError

from client.models import GenerationRequest, ImageSize, ImageSizePreset, LoraWeight, OutputFormat


class TestGenerationRequest(unittest.TestCase):
    """Test cases for GenerationRequest"""

    def test_defaults(self):
        """Unspecified fields fall back to the documented defaults"""
        args = GenerationRequest(prompt="a red cube").to_arguments()

        self.assertEqual(args["image_size"], {"width": 1024, "height": 1024})
        self.assertEqual(args["num_inference_steps"], 50)
        self.assertEqual(args["guidance_scale"], 5)
        self.assertTrue(args["enable_safety_checker"])
        self.assertEqual(args["output_format"], "jpeg")
        self.assertEqual(args["loras"], [])
        self.assertEqual(args["negative_prompt"], "")
        self.assertTrue(args["sync_mode"])
        self.assertNotIn("seed", args)

    def test_seed_zero_is_sent(self):
        """Seed 0 is a valid seed and must reach the service"""
        args = GenerationRequest(prompt="a red cube", seed=0).to_arguments()
        self.assertEqual(args["seed"], 0)

    def test_negative_seed_is_sent(self):
        """Negative seeds are passed through unchanged"""
        args = GenerationRequest(prompt="a red cube", seed=-5).to_arguments()
        self.assertEqual(args["seed"], -5)

    def test_sync_mode_override(self):
        """Stream and queue calls force sync_mode off"""
        request = GenerationRequest(prompt="a red cube", sync_mode=True)
        self.assertFalse(request.to_arguments(sync_mode=False)["sync_mode"])

    def test_preset_and_loras(self):
        """Presets are sent as names and LoRAs drop unset fields"""
        request = GenerationRequest(
            prompt="a red cube",
            image_size=ImageSizePreset.landscape_16_9,
            loras=(LoraWeight(path="user/repo"), LoraWeight(path="user/other", weight_name="w.safetensors", scale=0.5)),
        )
        args = request.to_arguments()

        self.assertEqual(args["image_size"], "landscape_16_9")
        self.assertEqual(args["loras"][0], {"path": "user/repo", "scale": 1.0})
        self.assertEqual(args["loras"][1], {"path": "user/other", "weight_name": "w.safetensors", "scale": 0.5})
        self.assertEqual(request.image_size_label, "landscape_16_9")

    def test_webhook_not_in_arguments(self):
        """The webhook is a transport option, not a model argument"""
        request = GenerationRequest(prompt="a red cube", webhook_url="https://example.com/hook")
        self.assertNotIn("webhook_url", request.to_arguments())

    def test_image_size_label_and_extension(self):
        """Custom sizes are labelled WxH and the extension follows the output format"""
        request = GenerationRequest(prompt="x", image_size=ImageSize(width=768, height=512), output_format=OutputFormat.png)
        self.assertEqual(request.image_size_label, "768x512")
        self.assertEqual(request.file_extension, "png")
        self.assertEqual(GenerationRequest(prompt="x").file_extension, "jpg")

    def test_bounds(self):
        """Out-of-range values are rejected"""
        with self.assertRaises(ValidationError):
            GenerationRequest(prompt="x", num_inference_steps=101)
        with self.assertRaises(ValidationError):
            GenerationRequest(prompt="x", guidance_scale=0.5)
        with self.assertRaises(ValidationError):
            GenerationRequest(prompt="x", num_images=5)

    def test_request_is_immutable(self):
        """Requests cannot be modified after creation"""
        request = GenerationRequest(prompt="x")
        with self.assertRaises(ValidationError):
            request.prompt = "y"


if __name__ == '__main__':
    unittest.main()
