# Infrastructure routes are unversioned; payment routes carry their own prefixes
from . import (
    health as health,
    payments as payments,
    prometheus as prometheus,
    stripe_webhooks as stripe_webhooks,
)
