from __future__ import annotations

import os
from typing import Any, Optional, Tuple

import torch

from .errors import ModelInitError


def get_device() -> torch.device:
    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def _freeze(model: torch.nn.Module, device: torch.device) -> torch.nn.Module:
    model.eval()
    for p in model.parameters():
        p.requires_grad_(False)
    return model.to(dtype=torch.float32).to(device)


def load_torchscript_model(model_path: str, device: Optional[torch.device] = None) -> torch.nn.Module:
    """
    Load a TorchScript segmentation/matting model saved with torch.jit.save().

    Pure state_dict checkpoints need the original model code and are rejected.
    """
    if device is None:
        device = get_device()

    if not os.path.exists(model_path):
        raise ModelInitError(f"Model not found: {model_path}")

    try:
        # Registers torchvision TorchScript ops (e.g. deform_conv2d) before loading.
        import torchvision  # noqa: F401

        # Load on CPU first; some archives carry float64 attributes that MPS rejects.
        model = torch.jit.load(model_path, map_location="cpu")
    except Exception as e:  # noqa: BLE001 - surface a helpful error
        raise ModelInitError(
            "Failed to load model. Expected a TorchScript segmentation model saved with "
            "torch.jit.save(); export state_dict checkpoints to TorchScript first."
        ) from e

    return _freeze(model, device)


def load_hf_model(hf_repo: str, device: Optional[torch.device] = None) -> torch.nn.Module:
    """
    Load an image segmentation model through Hugging Face transformers
    (trust_remote_code), float32 only.
    """
    if device is None:
        device = get_device()

    try:
        from transformers import AutoModelForImageSegmentation
    except Exception as e:  # noqa: BLE001
        raise ModelInitError("transformers is not installed. Run: pip install transformers") from e

    try:
        model = AutoModelForImageSegmentation.from_pretrained(
            hf_repo,
            trust_remote_code=True,
            low_cpu_mem_usage=False,
            device_map=None,
        )
    except Exception as e:  # noqa: BLE001
        raise ModelInitError(f"Failed to load Hugging Face model {hf_repo}: {e}") from e
    return _freeze(model, device)


def load_model(model_spec: str, device: Optional[torch.device] = None) -> Tuple[torch.nn.Module, torch.device]:
    """
    Model spec: "hf:<repo>" for Hugging Face, otherwise a TorchScript file path.
    """
    if device is None:
        device = get_device()
    if model_spec.startswith("hf:"):
        return load_hf_model(model_spec[len("hf:") :], device=device), device
    return load_torchscript_model(model_spec, device=device), device


def forward_model(model: torch.nn.Module, x: torch.Tensor) -> Any:
    with torch.no_grad():
        return model(x)


def release_device_cache(device: torch.device) -> None:
    """Return cached accelerator memory held by the allocator."""
    if device.type == "cuda":
        torch.cuda.empty_cache()
    elif device.type == "mps":
        torch.mps.empty_cache()
