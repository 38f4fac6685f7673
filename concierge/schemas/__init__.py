from concierge.schemas.jobs import InboundMessageJob, JobResult, JobStatus, MediaType
from concierge.schemas.webhook import WebhookResponse

__all__ = ["InboundMessageJob", "JobResult", "JobStatus", "MediaType", "WebhookResponse"]
