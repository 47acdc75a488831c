"""Unit tests for the lifecycle data model."""

import pytest

from sdstudio.core.catalog import ModelCatalog
from sdstudio.core.errors import InvalidRequest
from sdstudio.core.models import (
    MAX_SEED,
    Failed,
    GenerationRequest,
    Generating,
    Idle,
    Loading,
    ProgressEvent,
    Ready,
    ResolvedGeneration,
)


@pytest.fixture
def sd15():
    return ModelCatalog().get_descriptor("sd-1.5")


@pytest.fixture
def turbo():
    return ModelCatalog().get_descriptor("sd-turbo")


class TestLifecycleStates:
    """Tests for the lifecycle state variants."""

    def test_states_compare_by_value(self):
        """Variants with the same data should be equal."""
        assert Idle() == Idle()
        assert Ready("sd-1.5") == Ready("sd-1.5")
        assert Ready("sd-1.5") != Ready("sdxl")
        assert Loading("sd-1.5") != Ready("sd-1.5")

    def test_failed_equality_ignores_error(self):
        """Failed states with the same reason are equal whatever the exception."""
        assert Failed("boom", error=RuntimeError("a")) == Failed("boom", error=OSError("b"))

    def test_states_are_frozen(self):
        state = Ready("sd-1.5")
        with pytest.raises(AttributeError):
            state.model_id = "sdxl"

    def test_describe(self):
        assert Idle().describe() == "idle"
        assert Loading("sdxl").describe() == "loading (sdxl)"
        assert Ready("sd-1.5").describe() == "ready (sd-1.5)"
        assert Generating("sd-turbo").describe() == "generating (sd-turbo)"
        assert Failed("out of memory").describe() == "failed (out of memory)"

    def test_to_dict(self):
        """Only the data valid for each variant is serialised."""
        assert Idle().to_dict() == {"state": "idle"}
        assert Generating("sdxl").to_dict() == {"state": "generating", "model_id": "sdxl"}
        assert Failed("boom", error=RuntimeError("x")).to_dict() == {
            "state": "failed",
            "reason": "boom",
        }


class TestGenerationRequestValidation:
    """Tests for GenerationRequest.validate()."""

    def test_valid_request_passes(self):
        GenerationRequest(prompt="a cat", steps=4, guidance_scale=1.0, seed=7).validate()

    def test_minimal_request_passes(self):
        """Unset optional fields should not be validated."""
        GenerationRequest(prompt="a cat").validate()

    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    def test_empty_prompt_rejected(self, prompt):
        with pytest.raises(InvalidRequest, match="empty"):
            GenerationRequest(prompt=prompt).validate()

    def test_prompt_at_limit_accepted(self):
        GenerationRequest(prompt="a" * 500).validate(max_prompt_length=500)

    def test_prompt_over_limit_rejected(self):
        """The message should name the length and the maximum."""
        with pytest.raises(InvalidRequest, match=r"501 characters.*Maximum is 500"):
            GenerationRequest(prompt="a" * 501).validate(max_prompt_length=500)

    def test_negative_prompt_over_limit_rejected(self):
        with pytest.raises(InvalidRequest, match="Negative prompt"):
            GenerationRequest(prompt="cat", negative_prompt="x" * 11).validate(max_prompt_length=10)

    @pytest.mark.parametrize("steps", [0, 101, -1])
    def test_steps_out_of_range(self, steps):
        with pytest.raises(InvalidRequest, match="steps"):
            GenerationRequest(prompt="cat", steps=steps).validate()

    @pytest.mark.parametrize("steps", [True, 4.5, "4"])
    def test_steps_must_be_integer(self, steps):
        with pytest.raises(InvalidRequest, match="integer"):
            GenerationRequest(prompt="cat", steps=steps).validate()

    @pytest.mark.parametrize("guidance", [-0.1, 20.1])
    def test_guidance_out_of_range(self, guidance):
        with pytest.raises(InvalidRequest, match="Guidance"):
            GenerationRequest(prompt="cat", guidance_scale=guidance).validate()

    @pytest.mark.parametrize("guidance", ["7.5", True, [1.0]])
    def test_guidance_must_be_number(self, guidance):
        with pytest.raises(InvalidRequest, match="number"):
            GenerationRequest(prompt="cat", guidance_scale=guidance).validate()

    @pytest.mark.parametrize("seed", [-2, MAX_SEED + 1])
    def test_seed_out_of_range(self, seed):
        with pytest.raises(InvalidRequest, match="Seed"):
            GenerationRequest(prompt="cat", seed=seed).validate()

    def test_invalid_request_is_value_error(self):
        """InvalidRequest should also be catchable as ValueError."""
        with pytest.raises(ValueError):
            GenerationRequest(prompt="").validate()


class TestGenerationRequestResolve:
    """Tests for GenerationRequest.resolve()."""

    def test_wants_random_seed(self):
        assert GenerationRequest(prompt="cat").wants_random_seed is True
        assert GenerationRequest(prompt="cat", seed=0).wants_random_seed is False

    def test_defaults_come_from_descriptor(self, sd15):
        resolved = GenerationRequest(prompt="cat").resolve(sd15, seed=99)

        assert resolved == ResolvedGeneration(
            prompt="cat",
            negative_prompt="blurry, bad quality, distorted, low quality",
            width=512,
            height=512,
            steps=30,
            guidance_scale=7.5,
            seed=99,
        )

    def test_explicit_values_win(self, turbo):
        request = GenerationRequest(
            prompt="  cat  ",
            negative_prompt="",
            steps=2,
            guidance_scale=3,
            seed=5,
        )

        resolved = request.resolve(turbo, seed=5)

        assert resolved.prompt == "cat"
        assert resolved.negative_prompt == ""
        assert resolved.steps == 2
        assert resolved.guidance_scale == 3.0
        assert isinstance(resolved.guidance_scale, float)

    def test_resolution_always_from_model(self, sd15, turbo):
        request = GenerationRequest(prompt="cat")
        xl = ModelCatalog().get_descriptor("sdxl")

        assert request.resolve(xl, seed=1).width == 1024
        assert request.resolve(turbo, seed=1).height == 512

    def test_to_dict(self, turbo):
        data = GenerationRequest(prompt="cat").resolve(turbo, seed=3).to_dict()
        assert data["seed"] == 3
        assert data["width"] == 512
        assert set(data) == {
            "prompt",
            "negative_prompt",
            "width",
            "height",
            "steps",
            "guidance_scale",
            "seed",
        }


class TestProgressEvent:
    """Tests for ProgressEvent."""

    def test_to_dict(self):
        event = ProgressEvent(phase="loading", percent=42.0, message="Loading UNet...")
        assert event.to_dict() == {"phase": "loading", "percent": 42.0, "message": "Loading UNet..."}
