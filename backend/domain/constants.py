"""
Domain constants used across services/routers.
"""

# Canonical payment proof body is f"{order_id}{PROOF_SEPARATOR}{payment_id}"
PROOF_SEPARATOR = "|"

# Local receipt ids sent along with each gateway order
RECEIPT_PREFIX = "rcpt_"

# Prefix of simulated gateway order ids (SIMULATION_MODE only)
SIMULATED_ORDER_PREFIX = "order_"

# Webhook signature header
WEBHOOK_SIGNATURE_HEADER = "X-Gateway-Signature"

# Upper bound on a failure reason stored for audit
MAX_FAILURE_REASON_LENGTH = 500
