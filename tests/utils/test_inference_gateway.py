"""
Tests for the PydanticAI inference gateway
Timeouts, the single degrade retry, error mapping and the shared concurrency ceiling.
"""
import asyncio
import pytest
from unittest.mock import Mock

from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.models import test as test_models

from deal_intel.models.analysis import ImpactScore, RelationshipStory
from deal_intel.utils.inference_gateway import (
    InferenceRequest,
    InferenceTimeoutError,
    InferenceUpstreamError,
    InferenceValidationError,
    PydanticAIGateway,
)

pytestmark = pytest.mark.asyncio


class ScriptedAgent:
    """Stands in for a PydanticAI Agent; each run pops the next scripted step."""

    def __init__(self, *steps, delay=0.0):
        self.steps = list(steps)
        self.delay = delay
        self.prompts = []
        self.active = 0
        self.max_active = 0

    async def run(self, prompt):
        self.prompts.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            step = self.steps.pop(0) if self.steps else ImpactScore(score=1, reasoning="ok")
            if self.delay:
                await asyncio.sleep(self.delay)
            if step == "hang":
                await asyncio.sleep(10)
            if isinstance(step, Exception):
                raise step
            return Mock(output=step)
        finally:
            self.active -= 1


def request(prompt="full context", degraded_prompt=None, name="ActivityImpactScorer"):
    return InferenceRequest(
        agent_name=name,
        model="openai:gpt-4o-mini",
        instructions="Score the activity.",
        prompt=prompt,
        output_type=ImpactScore,
        degraded_prompt=degraded_prompt,
    )


def gateway_for(agent, settings, **overrides):
    settings = settings.model_copy(update=overrides) if overrides else settings
    return PydanticAIGateway(settings=settings, agent_factory=lambda _: agent)


class TestGenerate:

    async def test_returns_validated_output(self, settings):
        agent = ScriptedAgent(ImpactScore(score=12, reasoning="Asked for pricing"))

        result = await gateway_for(agent, settings).generate(request())

        assert result.score == 12
        assert agent.prompts == ["full context"]

    async def test_agents_are_reused_per_analyzer(self, settings):
        factory = Mock(return_value=ScriptedAgent())
        gateway = PydanticAIGateway(settings=settings, agent_factory=factory)

        await gateway.generate(request())
        await gateway.generate(request(prompt="another activity"))

        assert factory.call_count == 1

    async def test_with_pydantic_ai_test_model(self, settings):
        gateway = PydanticAIGateway(settings=settings, model_override=test_models.TestModel())

        story = await gateway.generate(InferenceRequest(
            agent_name="RelationshipNarrativeGenerator",
            model="openai:gpt-4o-mini",
            instructions="Write the story.",
            prompt="Ana asked for pricing.",
            output_type=RelationshipStory,
        ))

        assert isinstance(story, RelationshipStory)


class TestDegradeRetry:

    async def test_timeout_retries_once_with_reduced_context(self, settings):
        agent = ScriptedAgent("hang", ImpactScore(score=3, reasoning="ok"))
        gateway = gateway_for(agent, settings, inference_timeout_seconds=0.05)

        result = await gateway.generate(request(degraded_prompt="reduced context"))

        assert result.score == 3
        assert agent.prompts == ["full context", "reduced context"]

    async def test_timeout_after_retry_raises(self, settings):
        agent = ScriptedAgent("hang", "hang")
        gateway = gateway_for(agent, settings, inference_timeout_seconds=0.05)

        with pytest.raises(InferenceTimeoutError) as exc_info:
            await gateway.generate(request(degraded_prompt="reduced context"))

        assert exc_info.value.agent_name == "ActivityImpactScorer"
        assert len(agent.prompts) == 2

    async def test_timeout_without_reduced_context_is_not_retried(self, settings):
        agent = ScriptedAgent("hang")
        gateway = gateway_for(agent, settings, inference_timeout_seconds=0.05)

        with pytest.raises(InferenceTimeoutError):
            await gateway.generate(request())

        assert agent.prompts == ["full context"]

    async def test_oversized_prompt_uses_reduced_context_up_front(self, settings):
        agent = ScriptedAgent()
        gateway = gateway_for(agent, settings, safe_input_tokens=5)

        await gateway.generate(request(prompt="x" * 500, degraded_prompt="small"))

        assert agent.prompts == ["small"]

    async def test_context_overflow_from_provider_degrades(self, settings):
        agent = ScriptedAgent(RuntimeError("This model's maximum context length is 128000 tokens"))

        await gateway_for(agent, settings).generate(request(degraded_prompt="reduced context"))

        assert agent.prompts == ["full context", "reduced context"]


class TestErrorMapping:

    async def test_schema_failure_is_validation_error(self, settings):
        agent = ScriptedAgent(UnexpectedModelBehavior("Exceeded maximum retries for output validation"))

        with pytest.raises(InferenceValidationError):
            await gateway_for(agent, settings).generate(request(degraded_prompt="reduced context"))

        # Validation failures never degrade
        assert agent.prompts == ["full context"]

    async def test_provider_failure_is_upstream_error(self, settings):
        agent = ScriptedAgent(RuntimeError("503 Service Unavailable"))

        with pytest.raises(InferenceUpstreamError):
            await gateway_for(agent, settings).generate(request(degraded_prompt="reduced context"))

        assert agent.prompts == ["full context"]


class TestConcurrency:

    async def test_shared_ceiling_across_analyzers(self, settings):
        agent = ScriptedAgent(delay=0.02)
        gateway = gateway_for(agent, settings, inference_concurrency=2)

        await asyncio.gather(*[
            gateway.generate(request(name=name))
            for name in ["ActivityImpactScorer", "RoleAssigner", "ResponsivenessClassifier"] * 3
        ])

        assert len(agent.prompts) == 9
        assert agent.max_active == 2
