"""
channels — Per-channel delivery backends.

Guardian channels expose:
    is_usable(guardian) → bool
    deliver(guardian, context) → DeliveryResult   (raises ChannelDeliveryError)

Fallback ordering lives in the dispatcher, not in the channels.
"""
