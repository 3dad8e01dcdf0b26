import pytest

from webhook_queue.collector.tester import (
    MOCK_PAYLOADS,
    SIMULATION_PRIORITY,
    WebhookTester,
    deep_merge,
)
from webhook_queue.common.models import QueueStatus, WebhookSource
from webhook_queue.queue.validators import InvalidWebhookError


class TestMockPayloads:

    def test_every_source_has_a_generator(self):
        assert set(MOCK_PAYLOADS) == set(WebhookSource)

    @pytest.mark.parametrize("source", list(WebhookSource))
    def test_generators_are_fresh(self, source):
        """Each call produces a new payload object."""
        generate = MOCK_PAYLOADS[source]
        assert generate() is not generate()

    def test_meta_variants(self):
        assert MOCK_PAYLOADS[WebhookSource.INSTAGRAM]()["object"] == "instagram"
        assert MOCK_PAYLOADS[WebhookSource.MESSENGER]()["object"] == "page"
        assert MOCK_PAYLOADS[WebhookSource.META]()["object"] in ("page", "instagram")

    def test_deep_merge(self):
        target = {"message": {"text": "a", "chat": {"id": 1}}, "update_id": 1}
        merged = deep_merge(target, {"message": {"text": "b"}, "extra": True})

        assert merged == {
            "message": {"text": "b", "chat": {"id": 1}},
            "update_id": 1,
            "extra": True,
        }

    def test_deep_merge_non_dict_target(self):
        payload = [{"event": "delivered"}]
        assert deep_merge(payload, {"event": "bounce"}) is payload


class TestWebhookTester:

    @pytest.fixture
    def tester(self, queue_service):
        return WebhookTester(queue_service)

    @pytest.mark.asyncio
    async def test_generate_with_custom_data(self, tester):
        payload = tester.generate_mock_webhook(
            WebhookSource.TELEGRAM, {"message": {"text": "custom"}}
        )
        assert payload["message"]["text"] == "custom"
        assert payload["message"]["from"]["username"] == "test_user"

    @pytest.mark.asyncio
    async def test_simulate_enqueues(self, tester, queue_service):
        """Simulated webhooks are queued with the simulation priority."""
        result = await tester.simulate_webhook(WebhookSource.SLACK, channel_id=8)

        item = await queue_service.store.get(result["id"])
        assert item.source == "slack"
        assert item.priority == SIMULATION_PRIORITY
        assert item.channel_id == 8
        assert item.payload == result["payload"]

    @pytest.mark.asyncio
    async def test_simulate_directly(self, tester, queue_service, recording_handler):
        queue_service.register_webhook_handler("asaas", recording_handler)

        result = await tester.simulate_webhook(WebhookSource.ASAAS, process_directly=True)

        assert result["success"] is True
        assert recording_handler.payloads == [result["payload"]]
        assert await queue_service.count_pending_items() == 0

    @pytest.mark.asyncio
    async def test_simulate_directly_handler_error(self, tester, queue_service, failing_handler):
        queue_service.register_webhook_handler("asaas", failing_handler)

        result = await tester.simulate_webhook(WebhookSource.ASAAS, process_directly=True)

        assert result["success"] is False
        assert result["error"] == "provider rejected payload"

    @pytest.mark.asyncio
    async def test_simulate_invalid_custom_data(self, tester, queue_service):
        """Custom data that breaks the payload shape is rejected before queueing."""
        with pytest.raises(InvalidWebhookError, match="twilio"):
            await tester.simulate_webhook(WebhookSource.TWILIO, {"From": ""})

        assert await queue_service.count_pending_items() == 0

    @pytest.mark.asyncio
    async def test_simulate_directly_invalid(self, tester, queue_service, recording_handler):
        queue_service.register_webhook_handler("twilio", recording_handler)

        result = await tester.simulate_webhook(
            WebhookSource.TWILIO, {"From": ""}, process_directly=True
        )

        assert result["success"] is False
        assert result["error"] == "Invalid payload for webhook source: twilio"
        assert recording_handler.payloads == []

    @pytest.mark.asyncio
    async def test_simulate_skip_validation(self, tester, queue_service):
        result = await tester.simulate_webhook(
            WebhookSource.TWILIO, {"From": ""}, skip_validation=True
        )

        item = await queue_service.store.get(result["id"])
        assert item.payload["From"] == ""

    @pytest.mark.asyncio
    async def test_simulate_batch(self, tester, queue_service):
        """Test that a batch shares an id and carries the batch tags."""
        result = await tester.simulate_batch(WebhookSource.TELEGRAM, 3)

        assert result["count"] == 3
        items = await queue_service.get_pending_items(limit=10, batch_id=result["batch_id"])
        assert len(items) == 3
        for item in items:
            assert item.tags == ["batch-test", "type-telegram"]
            assert item.priority == SIMULATION_PRIORITY
            assert item.status == QueueStatus.PENDING
