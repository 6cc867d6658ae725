from signdesk.services import (
    access_service,
    background,
    contract_service,
    expiration_sweeper,
    notification_service,
    signature_service,
    signature_state,
    user_service,
    webhook_handlers,
    webhook_ingestor,
)
