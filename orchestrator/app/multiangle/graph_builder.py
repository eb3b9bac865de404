from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .catalog import CameraPose, axis_value
from .options import GenerationOptions


# Trigger token the multiple-angles LoRA was trained with.
ANGLE_TRIGGER = "<sks>"

TaskGraph = Dict[str, Any]


@dataclass(frozen=True)
class WorkflowProfile:
    ckpt_name: str = "qwen-image-edit-2511.safetensors"
    lora_name: str = "qwen-image-edit-2511-multiple-angles-lora.safetensors"
    negative_prompt: str = "blurry, low quality, distorted, deformed"
    sampler: str = "euler"
    scheduler: str = "normal"
    denoise: float = 0.75
    filename_prefix: str = "multiangle"


def pose_prompt(pose: CameraPose) -> str:
    """Conditioning text for a pose: trigger, then azimuth, elevation and distance phrases."""
    az = axis_value("azimuth", pose.azimuth)
    el = axis_value("elevation", pose.elevation)
    dist = axis_value("distance", pose.distance)
    return f"{ANGLE_TRIGGER} {az.phrase} {el.phrase} {dist.phrase}"


def build_multiangle_graph(
    image_ref: str,
    pose: CameraPose,
    options: GenerationOptions,
    seed: int,
    profile: WorkflowProfile | None = None,
) -> TaskGraph:
    """
    Image-edit graph re-rendering `image_ref` (a name the backend already holds)
    from `pose`. Pure: the same arguments always give the same graph.
    """
    prof = profile or WorkflowProfile()
    nodes: Dict[str, Dict[str, Any]] = {}
    nodes["1"] = {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": prof.ckpt_name}}
    nodes["2"] = {
        "class_type": "LoraLoader",
        "inputs": {
            "model": ["1", 0],
            "clip": ["1", 1],
            "lora_name": prof.lora_name,
            "strength_model": float(options.strength),
            "strength_clip": float(options.strength),
        },
    }
    nodes["3"] = {"class_type": "LoadImage", "inputs": {"image": image_ref}}
    # positive / negative text encodes
    nodes["4"] = {"class_type": "CLIPTextEncode", "inputs": {"text": pose_prompt(pose), "clip": ["2", 1]}}
    nodes["5"] = {"class_type": "CLIPTextEncode", "inputs": {"text": prof.negative_prompt, "clip": ["2", 1]}}
    nodes["6"] = {"class_type": "VAEEncode", "inputs": {"pixels": ["3", 0], "vae": ["1", 2]}}
    nodes["7"] = {
        "class_type": "KSampler",
        "inputs": {
            "model": ["2", 0],
            "positive": ["4", 0],
            "negative": ["5", 0],
            "latent_image": ["6", 0],
            "seed": int(seed),
            "steps": int(options.steps),
            "cfg": float(options.cfg),
            "sampler_name": prof.sampler,
            "scheduler": prof.scheduler,
            "denoise": prof.denoise,
        },
    }
    nodes["8"] = {"class_type": "VAEDecode", "inputs": {"samples": ["7", 0], "vae": ["1", 2]}}
    nodes["9"] = {"class_type": "SaveImage", "inputs": {"images": ["8", 0], "filename_prefix": prof.filename_prefix}}
    return {"prompt": nodes}
