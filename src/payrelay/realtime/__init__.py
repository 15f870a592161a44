"""Real-time delivery to dashboards — in-process, no broker.

Learn: Events flow one way:
1. RelayService → SessionRegistry.fan_out_to_account() (per-account filter)
2. SessionChannel queue → /events Server-Sent Events stream → browser

Everything lives in this process; a second relay instance would not see
the first one's sessions.
"""
