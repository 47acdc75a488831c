"""Tests for sdstudio.api.models — Pydantic request models.

Tests cover:
- Required field validation on GenerateRequest and LoadModelRequest.
- Default values for optional fields.
- Range constraints shared with the core data model.
- Conversion to the controller's GenerationRequest.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from sdstudio.api.models import GenerateRequest, LoadModelRequest
from sdstudio.core.models import MAX_SEED, RANDOM_SEED, GenerationRequest


class TestLoadModelRequest:
    """Test LoadModelRequest Pydantic model."""

    def test_valid_request(self):
        req = LoadModelRequest(model_id="sd-turbo")
        assert req.model_id == "sd-turbo"

    def test_missing_model_id_raises(self):
        """Omitting model_id should raise ValidationError."""
        with pytest.raises(ValidationError):
            LoadModelRequest()


class TestGenerateRequest:
    """Test GenerateRequest Pydantic model."""

    def test_valid_minimal_request(self):
        """Only the prompt is required; the rest defers to the model."""
        req = GenerateRequest(prompt="A lighthouse at dusk.")

        assert req.prompt == "A lighthouse at dusk."
        assert req.negative_prompt is None
        assert req.steps is None
        assert req.guidance_scale is None
        assert req.seed == RANDOM_SEED

    def test_missing_prompt_raises(self):
        """Omitting the prompt should raise ValidationError."""
        with pytest.raises(ValidationError):
            GenerateRequest(steps=4)

    def test_width_and_height_are_ignored(self):
        """Image size always comes from the model, so extra fields do nothing."""
        req = GenerateRequest(prompt="cat", width=2048, height=2048)
        assert not hasattr(req, "width")

    @pytest.mark.parametrize("steps", [0, 101, -3])
    def test_steps_out_of_range(self, steps):
        with pytest.raises(ValidationError):
            GenerateRequest(prompt="cat", steps=steps)

    @pytest.mark.parametrize("guidance", [-0.5, 20.5])
    def test_guidance_out_of_range(self, guidance):
        with pytest.raises(ValidationError):
            GenerateRequest(prompt="cat", guidance_scale=guidance)

    def test_seed_bounds(self):
        """-1 and MAX_SEED are accepted; anything outside is rejected."""
        assert GenerateRequest(prompt="cat", seed=-1).seed == -1
        assert GenerateRequest(prompt="cat", seed=MAX_SEED).seed == MAX_SEED
        with pytest.raises(ValidationError):
            GenerateRequest(prompt="cat", seed=-2)
        with pytest.raises(ValidationError):
            GenerateRequest(prompt="cat", seed=MAX_SEED + 1)


class TestToGenerationRequest:
    """Test conversion to the core GenerationRequest."""

    def test_fields_are_copied(self):
        req = GenerateRequest(
            prompt="A goblin workshop.",
            negative_prompt="blurry",
            steps=8,
            guidance_scale=3.5,
            seed=42,
        )

        converted = req.to_generation_request()

        assert isinstance(converted, GenerationRequest)
        assert converted == GenerationRequest(
            prompt="A goblin workshop.",
            negative_prompt="blurry",
            steps=8,
            guidance_scale=3.5,
            seed=42,
        )

    def test_unset_fields_stay_unset(self):
        """Omitted fields should stay None so model defaults apply."""
        converted = GenerateRequest(prompt="cat").to_generation_request()

        assert converted.negative_prompt is None
        assert converted.steps is None
        assert converted.guidance_scale is None
        assert converted.wants_random_seed is True
