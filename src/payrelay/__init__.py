"""payrelay — payment-terminal event relay.

Receives "transaction completed" webhooks, records each transaction once,
and fans it out to the terminal's voice speaker (MQTT) and to the owning
account's live dashboards (Server-Sent Events).
"""

__version__ = "0.1.0"
