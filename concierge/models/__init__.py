from concierge.models.chat import Chat
from concierge.models.customer import Customer
from concierge.models.inbound_job import InboundJob
from concierge.models.message import Message
from concierge.models.message_log import MessageLog
from concierge.models.salon import Salon

__all__ = [
    "Salon",
    "Customer",
    "Chat",
    "Message",
    "MessageLog",
    "InboundJob",
]
