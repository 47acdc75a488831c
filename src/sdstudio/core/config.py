"""Configuration management for SD Studio.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the SDSTUDIO_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (SDSTUDIO_* prefix)
2. .env file in the project root
3. Default values defined in StudioConfig

Example .env file:
    SDSTUDIO_DEVICE=cuda
    SDSTUDIO_TORCH_DTYPE=float16
    SDSTUDIO_DEFAULT_MODEL_ID=sd-turbo
    SDSTUDIO_MODELS_DIR=models

Global Configuration Instance
------------------------------
A global `config` instance is created at module import time for the
application entry point (:mod:`sdstudio.api.main`).  Library code such as
:class:`~sdstudio.core.controller.LifecycleController` and
:class:`~sdstudio.core.inference.DiffusersCapability` takes an explicit
config object instead, so tests can build isolated instances.

Usage Example
-------------
    from sdstudio.core.config import config

    print(config.device)
    print(config.models_dir)

Device Selection
----------------
``device`` names the acceleration API the host must provide:
- ``auto``: CUDA if available, otherwise Apple MPS
- ``cuda``: NVIDIA CUDA only
- ``mps``: Apple Metal Performance Shaders only
- ``cpu``: no acceleration; the capability probe reports unsupported

See Also
--------
- StudioConfig: Full configuration class documentation
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StudioConfig(BaseSettings):
    """Main configuration for SD Studio.

    Values are loaded from environment variables with the SDSTUDIO_ prefix,
    with fallback to defaults defined here.  ``models_dir`` is created if it
    does not exist.

    Attributes
    ----------
    Model Settings:
        default_model_id : str
            Catalog id of the model suggested to the user on startup
        torch_dtype : Literal["bfloat16", "float16", "float32"]
            Torch dtype for model inference
        device : Literal["auto", "cuda", "mps", "cpu"]
            Acceleration backend required for inference

    Request Limits:
        max_prompt_length : int
            Maximum characters accepted in a prompt or negative prompt

    Performance Optimization:
        enable_attention_slicing : bool
            Enable attention slicing for lower VRAM usage
        enable_model_cpu_offload : bool
            Enable sequential CPU offloading for memory-constrained setups
        compile_model : bool
            Compile the UNet with torch.compile (slower first run)

    Paths:
        models_dir : Path
            Directory used as the HuggingFace download cache

    Server Settings:
        server_host : str
            Bind address for the HTTP server
        server_port : int
            Port for the HTTP server (1024-65535)
        log_level : str
            Root logging level for the application entry point

    Examples
    --------
        >>> custom_config = StudioConfig(device="cuda", torch_dtype="float32")
        >>> custom_config.server_port
        7860
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SDSTUDIO_",
        case_sensitive=False,
    )

    # Model settings
    default_model_id: str = Field(
        default="sd-1.5",
        description="Catalog id of the default model (best compatibility)",
    )
    torch_dtype: Literal["bfloat16", "float16", "float32"] = Field(
        default="float16",
        description="Torch dtype for model inference",
    )
    device: Literal["auto", "cuda", "mps", "cpu"] = Field(
        default="auto",
        description="Acceleration backend (auto picks cuda, then mps)",
    )

    # Request limits
    max_prompt_length: int = Field(
        default=500,
        description="Maximum prompt and negative prompt length in characters",
        ge=1,
        le=100000,
    )

    # Performance optimizations
    enable_attention_slicing: bool = Field(
        default=False,
        description="Enable attention slicing for lower VRAM usage",
    )
    enable_model_cpu_offload: bool = Field(
        default=False,
        description="Enable sequential CPU offloading for memory-constrained setups",
    )
    compile_model: bool = Field(
        default=False,
        description="Compile model for faster inference (slower first run)",
    )

    # Paths
    models_dir: Path = Field(
        default=Path("models"),
        description="Directory to cache downloaded model weights",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level used by the application entry point",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the model cache directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.models_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance used by the application entry point.
# Loads values from environment variables (SDSTUDIO_* prefix) and .env file.
config = StudioConfig()
