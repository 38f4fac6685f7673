from concierge.services.conversation_service import (
    get_or_create_chat,
    get_or_create_customer,
    get_salon_by_whatsapp,
    is_manual,
    set_manual,
)
from concierge.services.message_service import (
    get_history,
    requires_response,
    save_inbound_message,
    save_message,
)
