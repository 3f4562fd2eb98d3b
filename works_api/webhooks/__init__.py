from works_api.webhooks.schemas import WebhookAck
from works_api.webhooks.service import WebhookIngestionService, webhook_service

__all__ = ["WebhookAck", "WebhookIngestionService", "webhook_service"]
